"""Ephemeral toast notifications.

The queue keeps the most recent entries only (3 by default). Every entry is
removed automatically after a fixed delay; each removal is keyed by id, so a
timer that fires after its entry was evicted or cleared is a no-op.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from smartedu.tokens import generate_token

logger = structlog.get_logger()

Severity = Literal["info", "success", "warning", "error"]


class Notification(BaseModel):
    """A single user-facing toast."""

    id: str
    message: str
    type: Severity = "info"
    time: str = "Just now"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationQueue:
    """Capped, auto-expiring list of notifications, newest first."""

    def __init__(
        self,
        ttl_seconds: float = 5.0,
        max_items: int = 3,
        on_change: Callable[[list[Notification]], None] | None = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_items = max_items
        self._items: list[Notification] = []
        self._on_change = on_change

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    def add(self, message: str, severity: Severity = "info") -> Notification:
        """Prepend a notification, evict the oldest beyond the cap, schedule expiry."""
        notification = Notification(id=generate_token(), message=message, type=severity)
        self._items = [notification, *self._items][: self._max_items]
        logger.debug("notification_added", id=notification.id, severity=severity)

        loop = asyncio.get_running_loop()
        loop.call_later(self._ttl, self.remove, notification.id)

        self._changed()
        return notification

    def remove(self, notification_id: str) -> bool:
        """Remove a notification by id. Returns False if it is already gone."""
        remaining = [n for n in self._items if n.id != notification_id]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        self._changed()
        return True

    def clear(self) -> None:
        self._items = []
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.items)
