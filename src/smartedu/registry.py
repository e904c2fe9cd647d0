"""Process-wide map from authenticated account ids to their controllers.

A controller lives while a WebSocket client holds it or while it keeps being
used over HTTP. Once released by its last WebSocket it is closed; controllers
with no holders and no use for ``idle_seconds`` are closed by the sweeper.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

import structlog

from smartedu.ai.client import AIClient
from smartedu.config import Settings, get_settings
from smartedu.controller import AppController
from smartedu.database import get_session_factory
from smartedu.feed.realtime import RealtimeChannel
from smartedu.feed.service import FeedService
from smartedu.session.provider import AccountSessionProvider
from smartedu.storage.local import FileStorage

logger = structlog.get_logger()

ControllerFactory = Callable[[str, str], AppController]


class ControllerRegistry:
    """Creates, bootstraps and disposes one controller per account."""

    def __init__(
        self,
        factory: ControllerFactory,
        *,
        idle_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._controllers: dict[str, AppController] = {}
        self._last_used: dict[str, float] = {}
        self._holders: dict[str, int] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._controllers)

    def get(self, account_id: str) -> AppController | None:
        return self._controllers.get(account_id)

    async def get_or_create(self, account_id: str, access_token: str) -> AppController:
        controller = self._controllers.get(account_id)
        if controller is None:
            async with self._lock:
                controller = self._controllers.get(account_id)
                if controller is None:
                    controller = self._factory(account_id, access_token)
                    await controller.start()
                    self._controllers[account_id] = controller
                    logger.info("controller_started", account_id=account_id, active=len(self._controllers))
        self._last_used[account_id] = self._clock()
        return controller

    async def acquire(self, account_id: str, access_token: str) -> AppController:
        """Get the controller and keep it alive until the matching ``release()``."""
        controller = await self.get_or_create(account_id, access_token)
        self._holders[account_id] = self._holders.get(account_id, 0) + 1
        return controller

    async def release(self, account_id: str) -> None:
        """Drop one hold; the last release closes the controller."""
        remaining = self._holders.get(account_id, 0) - 1
        if remaining > 0:
            self._holders[account_id] = remaining
            return
        self._holders.pop(account_id, None)
        await self.remove(account_id)

    async def remove(self, account_id: str) -> None:
        controller = self._controllers.pop(account_id, None)
        self._last_used.pop(account_id, None)
        self._holders.pop(account_id, None)
        if controller is not None:
            await controller.close()
            logger.info("controller_closed", account_id=account_id, active=len(self._controllers))

    async def evict_idle(self) -> int:
        """Close unheld controllers unused for ``idle_seconds``. Returns how many were closed."""
        cutoff = self._clock() - self._idle_seconds
        idle = [
            account_id
            for account_id, last_used in self._last_used.items()
            if last_used <= cutoff and not self._holders.get(account_id)
        ]
        for account_id in idle:
            await self.remove(account_id)
        if idle:
            logger.info("controllers_evicted", count=len(idle), active=len(self._controllers))
        return len(idle)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Evict idle controllers every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.evict_idle()
            except Exception:
                logger.error("controller_sweep_failed", exc_info=True)

    async def close(self) -> None:
        for account_id in list(self._controllers):
            await self.remove(account_id)


def build_controller_factory(
    realtime: RealtimeChannel | None,
    settings: Settings | None = None,
) -> ControllerFactory:
    """Factory wiring controllers to the database, realtime channel and AI client."""
    settings = settings or get_settings()
    ai = AIClient(settings) if settings.ai_api_key else None

    def factory(account_id: str, access_token: str) -> AppController:
        session_factory = get_session_factory()
        return AppController(
            AccountSessionProvider(session_factory, account_id, access_token),
            FileStorage(Path(settings.local_storage_dir) / account_id),
            FeedService(session_factory, realtime),
            ai=ai,
            settings=settings,
        )

    return factory
