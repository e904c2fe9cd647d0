"""Session provider boundary: current session, metadata writes, auth events."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smartedu.db.models import Account
from smartedu.errors import BackendUnavailableError
from smartedu.subscriptions import Subscription

logger = structlog.get_logger()

AuthEvent = Literal["INITIAL_SESSION", "SIGNED_IN", "SIGNED_OUT", "USER_UPDATED", "TOKEN_REFRESHED"]


class AuthUser(BaseModel):
    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    access_token: str
    user: AuthUser | None = None


AuthListener = Callable[[AuthEvent, AuthSession | None], None]


def _to_user(account: Account) -> AuthUser:
    return AuthUser(id=str(account.id), email=account.email, user_metadata=dict(account.user_metadata or {}))


class SessionProvider(ABC):
    """Source of the current session and sink for user-metadata writes."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    @abstractmethod
    async def get_session(self) -> AuthSession | None:
        """Return the current session, or None when signed out."""

    @abstractmethod
    async def update_user(self, data: dict[str, Any]) -> AuthUser:
        """Shallow-merge ``data`` into the user's metadata bag."""

    @abstractmethod
    async def sign_out(self) -> None: ...

    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(lambda: self._listeners.remove(listener))

    def _emit(self, event: AuthEvent, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.error("auth_listener_failed", auth_event=event, exc_info=True)


class AccountSessionProvider(SessionProvider):
    """Session backed by a row in the ``accounts`` table.

    The bearer token has already been verified by the HTTP layer; this class
    only resolves the account it names and writes its metadata bag.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        account_id: str,
        access_token: str,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._account_id = account_id
        self._access_token = access_token
        self._signed_out = False

    def _to_session(self, account: Account) -> AuthSession:
        return AuthSession(access_token=self._access_token, user=_to_user(account))

    async def get_session(self) -> AuthSession | None:
        if self._signed_out:
            return None
        try:
            async with self._session_factory() as db:
                account = await db.get(Account, self._account_id)
        except (SQLAlchemyError, OSError) as e:
            msg = "Session lookup failed"
            raise BackendUnavailableError(msg) from e
        if account is None:
            return None
        return self._to_session(account)

    async def update_user(self, data: dict[str, Any]) -> AuthUser:
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(Account).where(Account.id == self._account_id).with_for_update())
                account = result.scalar_one_or_none()
                if account is None:
                    msg = f"Account {self._account_id} not found"
                    raise BackendUnavailableError(msg)
                account.user_metadata = {**(account.user_metadata or {}), **data}
                account.updated_at = func.now()
                await db.commit()
                await db.refresh(account)
                user = _to_user(account)
        except (SQLAlchemyError, OSError) as e:
            msg = "User metadata update failed"
            raise BackendUnavailableError(msg) from e

        logger.debug("user_metadata_updated", account_id=self._account_id, fields=sorted(data))
        self._emit("USER_UPDATED", AuthSession(access_token=self._access_token, user=user))
        return user

    async def sign_out(self) -> None:
        self._signed_out = True
        logger.info("signed_out", account_id=self._account_id)
        self._emit("SIGNED_OUT", None)


async def get_or_create_account(db: AsyncSession, account_id: str, email: str | None = None) -> Account:
    """Load an account, creating an empty one on first sight."""
    account = await db.get(Account, account_id)
    if account is None:
        account = Account(id=account_id, email=email, user_metadata={})
        db.add(account)
        await db.commit()
        await db.refresh(account)
        logger.info("account_created", account_id=account_id)
    return account
