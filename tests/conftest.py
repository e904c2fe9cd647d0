"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from smartedu.auth.dependencies import CurrentAccount, get_current_account
from smartedu.config import Settings
from smartedu.controller import AppController
from smartedu.dependencies import get_controller, get_registry
from smartedu.feed.service import FeedService
from smartedu.main import create_app
from smartedu.notifications.queue import NotificationQueue
from smartedu.profile.cloud_sync import DebouncedCloudSync
from smartedu.profile.store import ProfileStore
from smartedu.session.provider import AuthSession, AuthUser, SessionProvider
from smartedu.storage.local import MemoryStorage, StorageKeys


class InMemorySessionProvider(SessionProvider):
    """Session provider holding one user in memory."""

    def __init__(self, user: AuthUser | None = None, *, fail_get: bool = False) -> None:
        super().__init__()
        self.user = user
        self.fail_get = fail_get
        self.fail_updates = False
        self.fail_sign_out = False
        self.updates: list[dict[str, Any]] = []

    async def get_session(self) -> AuthSession | None:
        if self.fail_get:
            msg = "session backend down"
            raise OSError(msg)
        if self.user is None:
            return None
        return AuthSession(access_token="token", user=self.user)

    async def update_user(self, data: dict[str, Any]) -> AuthUser:
        if self.fail_updates:
            msg = "metadata backend down"
            raise OSError(msg)
        assert self.user is not None
        self.updates.append(dict(data))
        self.user = self.user.model_copy(update={"user_metadata": {**self.user.user_metadata, **data}})
        self._emit("USER_UPDATED", AuthSession(access_token="token", user=self.user))
        return self.user

    async def sign_out(self) -> None:
        if self.fail_sign_out:
            msg = "sign-out failed"
            raise OSError(msg)
        self.user = None
        self._emit("SIGNED_OUT", None)

    def sign_in(self, user: AuthUser) -> None:
        self.user = user
        self._emit("SIGNED_IN", AuthSession(access_token="token", user=user))


def failing_session_factory() -> MagicMock:
    """Session factory whose sessions cannot connect."""
    return MagicMock(side_effect=OSError("connection refused"))


@pytest.fixture
def settings() -> Settings:
    """Settings with short timers so timer behaviour can be awaited."""
    return Settings(
        sync_debounce_seconds=0.05,
        notification_ttl_seconds=1.0,
        xp_gain_display_seconds=0.05,
        mentor_response_delay_seconds=0.05,
        ai_retry_base_delay_seconds=0.0,
        jwt_secret="test-secret-with-at-least-32-bytes!",
        _env_file=None,
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def keys() -> StorageKeys:
    return StorageKeys()


@pytest.fixture
def writes() -> list[dict[str, Any]]:
    """Payloads received by the cloud sync writer."""
    return []


@pytest.fixture
def cloud_sync(settings: Settings, writes: list[dict[str, Any]]) -> DebouncedCloudSync:
    async def writer(payload: dict[str, Any]) -> None:
        writes.append(payload)

    return DebouncedCloudSync(writer, settings.sync_debounce_seconds)


@pytest.fixture
def notifications(settings: Settings) -> NotificationQueue:
    return NotificationQueue(settings.notification_ttl_seconds, settings.notification_max_items)


@pytest.fixture
def store(
    storage: MemoryStorage,
    cloud_sync: DebouncedCloudSync,
    notifications: NotificationQueue,
    settings: Settings,
) -> ProfileStore:
    return ProfileStore(storage, cloud_sync, notifications, settings=settings)


def messages(queue: NotificationQueue) -> list[str]:
    return [n.message for n in queue.items]


@pytest_asyncio.fixture
async def api_controller(settings: Settings) -> AsyncGenerator[AppController, None]:
    """Controller for a signed-in account, with the feed backend offline."""
    provider = InMemorySessionProvider(AuthUser(id="acc-1", user_metadata={"full_name": "Ada"}))
    controller = AppController(provider, MemoryStorage(), FeedService(failing_session_factory()), settings=settings)
    await controller.start()
    yield controller
    await controller.close()


@pytest.fixture
def api_registry(api_controller: AppController) -> MagicMock:
    registry = MagicMock()
    registry.get = MagicMock(return_value=api_controller)
    registry.remove = AsyncMock()
    return registry


@pytest_asyncio.fixture
async def client(api_controller: AppController, api_registry: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with auth and controller lookup overridden."""
    app = create_app()

    app.dependency_overrides[get_controller] = lambda: api_controller
    app.dependency_overrides[get_current_account] = lambda: CurrentAccount(id="acc-1", access_token="token")
    app.dependency_overrides[get_registry] = lambda: api_registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
