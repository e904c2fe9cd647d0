"""Establish the session at startup and follow session-change events."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from smartedu.notifications.queue import NotificationQueue
from smartedu.profile.store import ProfileStore
from smartedu.session.provider import AuthEvent, AuthSession, SessionProvider
from smartedu.subscriptions import Subscription

logger = structlog.get_logger()


class SessionBootstrapper:
    """Hydrate the profile store from the session provider and keep it in step.

    ``loading`` is True until the first session check finishes, whatever its
    outcome.
    """

    def __init__(
        self,
        provider: SessionProvider,
        store: ProfileStore,
        notifications: NotificationQueue,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._notifications = notifications
        self._on_change = on_change
        self._subscription: Subscription | None = None
        self.loading = True
        self.session: AuthSession | None = None

    @property
    def user_id(self) -> str | None:
        if self.session is None or self.session.user is None:
            return None
        return self.session.user.id

    async def start(self) -> None:
        try:
            session = await self._provider.get_session()
            if session is not None and session.user is not None:
                self.session = session
                self._store.hydrate(session.user.id, session.user.user_metadata)
        except Exception:
            logger.error("session_check_failed", exc_info=True)
            self._notifications.add("Session check failed.", "error")
        finally:
            self.loading = False
            self._changed()

        if self._subscription is None:
            self._subscription = self._provider.on_auth_state_change(self._on_auth_state_change)

    def _on_auth_state_change(self, event: AuthEvent, session: AuthSession | None) -> None:
        if session is not None and session.user is not None:
            self.session = session
            # Our own metadata writes echo back as USER_UPDATED; the local
            # profile is already ahead of them.
            if event == "USER_UPDATED":
                return
            self._store.hydrate(session.user.id, session.user.user_metadata)
            self._changed()
            return

        self.session = None
        self._store.reset()
        self._changed()
        logger.info("session_cleared", auth_event=event)

    async def sign_out(self) -> None:
        """Sign out remotely; local state is cleared even if the provider fails."""
        try:
            await self._provider.sign_out()
        finally:
            if self.session is not None:
                self.session = None
                self._store.reset()
                self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
