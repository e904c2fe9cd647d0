"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from smartedu.auth.jwt import verify_token
from smartedu.database import get_session
from smartedu.session.provider import get_or_create_account

_bearer = HTTPBearer()


@dataclass(frozen=True)
class CurrentAccount:
    id: str
    access_token: str
    email: str | None = None


async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> CurrentAccount:
    """
    Verify the bearer token and make sure its account row exists.

    Raises 401 on an invalid or expired token.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    account = await get_or_create_account(db, payload["sub"], payload.get("email"))
    return CurrentAccount(id=str(account.id), access_token=credentials.credentials, email=account.email)
