"""Debounced mirroring of local profile mutations to the remote metadata bag.

Each ``schedule()`` merges its fields into a pending buffer and restarts a
single timer. When the timer fires, the union of every field touched since
the last successful write goes out in one remote call. A failed write is
logged and its fields are folded back under anything newer, so they ride
along with the next scheduled write.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger()

SyncWriter = Callable[[dict[str, Any]], Awaitable[None]]


class DebouncedCloudSync:
    """Coalesce bursts of remote profile writes into one per quiet window."""

    def __init__(self, writer: SyncWriter, delay_seconds: float = 2.0) -> None:
        self._writer = writer
        self._delay = delay_seconds
        self._pending: dict[str, Any] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._write_lock = asyncio.Lock()

    @property
    def pending(self) -> dict[str, Any]:
        return dict(self._pending)

    @property
    def is_scheduled(self) -> bool:
        return self._timer is not None

    def schedule(self, partial: dict[str, Any]) -> None:
        """Merge ``partial`` into the buffer and restart the quiet-window timer."""
        self._pending.update(partial)
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.create_task(self._write_pending())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _write_pending(self) -> None:
        # One write at a time: a failed write may only be folded back under
        # fields buffered after it, never over a later successful write.
        async with self._write_lock:
            if not self._pending:
                return

            payload, self._pending = self._pending, {}
            try:
                await self._writer(payload)
            except Exception:
                logger.warning("cloud_sync_failed", fields=sorted(payload), exc_info=True)
                self._pending = {**payload, **self._pending}
                return

            logger.debug("cloud_sync_written", fields=sorted(payload))

    async def flush(self) -> None:
        """Write the buffer now and wait for any write already in flight."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._inflight:
            await asyncio.gather(*self._inflight)
        await self._write_pending()

    def cancel(self) -> None:
        """Drop the timer and everything buffered."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = {}
