"""Per-user application state controller.

One ``AppController`` owns every piece of client state for a signed-in user
(profile, notifications, feed, session) and publishes each change to its
observers as ``(event_name, payload)``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal

import structlog

from smartedu.ai.client import AIClient
from smartedu.config import Settings, get_settings
from smartedu.feed.service import FeedService
from smartedu.feed.synchronizer import FeedSynchronizer
from smartedu.notifications.queue import Notification, NotificationQueue
from smartedu.profile.cloud_sync import DebouncedCloudSync
from smartedu.profile.store import ProfileStore
from smartedu.session.bootstrap import SessionBootstrapper
from smartedu.session.provider import SessionProvider
from smartedu.storage.local import LocalStorage
from smartedu.ventures.service import VentureLab

logger = structlog.get_logger()

ControllerEvent = Literal["profile", "notifications", "feed", "session"]
Listener = Callable[[ControllerEvent, dict[str, Any]], None]


class AppController:
    def __init__(
        self,
        provider: SessionProvider,
        storage: LocalStorage,
        feed_service: FeedService,
        *,
        ai: AIClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._provider = provider
        self._listeners: list[Listener] = []

        self.notifications = NotificationQueue(
            ttl_seconds=self._settings.notification_ttl_seconds,
            max_items=self._settings.notification_max_items,
            on_change=self._notifications_changed,
        )
        self.cloud_sync = DebouncedCloudSync(self._write_metadata, self._settings.sync_debounce_seconds)
        self.store = ProfileStore(
            storage,
            self.cloud_sync,
            self.notifications,
            settings=self._settings,
            mentor_responder=ai.generate_mentor_response if ai is not None else None,
            on_change=lambda: self._publish("profile", self.profile_snapshot()),
        )
        self.bootstrapper = SessionBootstrapper(
            provider,
            self.store,
            self.notifications,
            on_change=lambda: self._publish("session", self.session_snapshot()),
        )
        self.feed = FeedSynchronizer(
            feed_service,
            self.store,
            self.notifications,
            lambda: self.bootstrapper.user_id,
            settings=self._settings,
            on_change=lambda: self._publish("feed", self.feed.snapshot()),
        )
        self.ventures = VentureLab(ai, self.store, self.notifications, self._settings)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register an observer; the returned callable removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event: ControllerEvent, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.error("controller_listener_failed", controller_event=event, exc_info=True)

    def _notifications_changed(self, items: list[Notification]) -> None:
        self._publish("notifications", {"notifications": [n.model_dump(mode="json") for n in items]})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _write_metadata(self, payload: dict[str, Any]) -> None:
        if self.bootstrapper.user_id is None:
            logger.debug("cloud_sync_skipped_no_session", fields=sorted(payload))
            return
        await self._provider.update_user(payload)

    async def start(self) -> None:
        await self.bootstrapper.start()
        await self.feed.start()

    async def sign_out(self) -> None:
        await self.cloud_sync.flush()
        await self.bootstrapper.sign_out()

    async def close(self) -> None:
        """Flush pending profile writes and release subscriptions and timers."""
        self.feed.stop()
        self.bootstrapper.stop()
        self.store.cancel_timers()
        await self.cloud_sync.flush()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def profile_snapshot(self) -> dict[str, Any]:
        return {
            "profile": self.store.profile.model_dump(mode="json"),
            "last_xp_gain": self.store.last_xp_gain,
            "theme": self.store.theme,
            "saved_event_ids": self.store.saved_event_ids,
            "registered_event_ids": self.store.registered_event_ids,
        }

    def session_snapshot(self) -> dict[str, Any]:
        return {"loading": self.bootstrapper.loading, "user_id": self.bootstrapper.user_id}

    def snapshot(self) -> dict[str, Any]:
        return {
            **self.profile_snapshot(),
            **self.session_snapshot(),
            "notifications": [n.model_dump(mode="json") for n in self.notifications.items],
        }
