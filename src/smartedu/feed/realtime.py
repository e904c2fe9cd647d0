"""Realtime record-change notifications over Redis pub/sub.

Writers publish ``{"table": ..., "event": ..., "id": ...}`` on one channel.
A single listener per process fans each message out to the callbacks
registered for that table.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from smartedu.subscriptions import Subscription

logger = structlog.get_logger()

ChangeCallback = Callable[[dict[str, Any]], Awaitable[None]]


class RealtimeChannel:
    """Publishes record changes and dispatches them to per-table subscribers."""

    def __init__(self, redis_client: aioredis.Redis, channel: str = "realtime:changes") -> None:
        self.redis = redis_client
        self.channel = channel
        self._callbacks: dict[str, list[ChangeCallback]] = defaultdict(list)
        self._running = False

    @property
    def running(self) -> bool:
        """True while the listener loop is consuming the channel."""
        return self._running

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        self._callbacks[table].append(callback)
        return Subscription(lambda: self._unsubscribe(table, callback))

    def _unsubscribe(self, table: str, callback: ChangeCallback) -> None:
        callbacks = self._callbacks.get(table, [])
        if callback in callbacks:
            callbacks.remove(callback)

    async def publish(self, table: str, event: str, record_id: str) -> None:
        """Announce a change. Publishing failures are logged, never raised."""
        message = json.dumps({"table": table, "event": event, "id": record_id})
        try:
            await self.redis.publish(self.channel, message)
        except (RedisError, OSError):
            logger.warning("realtime_publish_failed", table=table, change_event=event, exc_info=True)

    async def dispatch(self, payload: dict[str, Any]) -> int:
        """Run every callback registered for the payload's table.

        Returns the number of callbacks that completed.
        """
        table = payload.get("table", "")
        completed = 0
        for callback in list(self._callbacks.get(table, [])):
            try:
                await callback(payload)
                completed += 1
            except Exception:
                logger.error("realtime_callback_failed", table=table, exc_info=True)
        return completed

    async def start(self) -> None:
        """Listen on the channel until ``stop()`` is called."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        self._running = True
        logger.info("realtime_channel_started", channel=self.channel)

        try:
            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue

                try:
                    data = message.get("data", b"")
                    if isinstance(data, bytes):
                        data = data.decode()
                    payload = json.loads(data)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    logger.warning("realtime_invalid_message", channel=self.channel)
                    continue

                if not isinstance(payload, dict):
                    continue

                sent = await self.dispatch(payload)
                if sent > 0:
                    logger.debug("realtime_dispatched", table=payload.get("table"), recipients=sent)

        except asyncio.CancelledError:
            pass
        finally:
            self._running = False
            await pubsub.unsubscribe()
            await pubsub.aclose()
            logger.info("realtime_channel_stopped")

    async def stop(self) -> None:
        """Signal the listener to stop."""
        self._running = False
