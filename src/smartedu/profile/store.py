"""Authoritative local view of the signed-in user.

Every mutation:
1. Replaces the in-memory profile and returns it
2. Persists the profile blob (or event list) to local storage
3. Schedules a debounced write of the touched metadata keys

Remote failures never roll back or block a local mutation.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from smartedu.config import Settings, get_settings
from smartedu.notifications.queue import NotificationQueue
from smartedu.profile.cloud_sync import DebouncedCloudSync
from smartedu.profile.models import (
    PROFILE_MIRROR_FIELDS,
    Badge,
    CourseInput,
    EnrolledCourse,
    Experience,
    MentorshipRequest,
    Preferences,
    SocialProfile,
    Theme,
    UserProfile,
    UserRole,
    VentureAnalysis,
)
from smartedu.storage.local import LocalStorage, StorageKeys
from smartedu.tokens import generate_token

logger = structlog.get_logger()

MentorResponder = Callable[[str, str, list[str]], Awaitable[str]]

DEFAULT_MENTOR_RESPONSE = "I'm excited to support your journey within our innovation network."


def _dump(items: list[Any]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def _validated_list(adapter: TypeAdapter[Any], value: Any, fallback: list[Any]) -> list[Any]:  # noqa: ANN401
    """Use ``value`` when it is a list of valid records, otherwise keep ``fallback``."""
    if not isinstance(value, list):
        return fallback
    try:
        return adapter.validate_python(value)
    except ValidationError:
        logger.warning("remote_metadata_invalid_list", fallback_size=len(fallback))
        return fallback


_BADGES = TypeAdapter(list[Badge])
_COURSES = TypeAdapter(list[EnrolledCourse])
_SOCIAL = TypeAdapter(list[SocialProfile])
_EXPERIENCE = TypeAdapter(list[Experience])
_REQUESTS = TypeAdapter(list[MentorshipRequest])
_PITCHES = TypeAdapter(list[VentureAnalysis])


class ProfileStore:
    """In-memory profile with named mutations, local persistence and remote mirroring."""

    def __init__(
        self,
        storage: LocalStorage,
        cloud_sync: DebouncedCloudSync,
        notifications: NotificationQueue,
        *,
        settings: Settings | None = None,
        keys: StorageKeys | None = None,
        mentor_responder: MentorResponder | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._storage = storage
        self._sync = cloud_sync
        self._notifications = notifications
        self._settings = settings or get_settings()
        self._keys = keys or StorageKeys(self._settings.storage_prefix)
        self._mentor_responder = mentor_responder
        self._on_change = on_change

        self._profile = self._load_profile()
        self._theme: Theme = self._profile.preferences.theme
        self._saved_event_ids: list[str] = list(storage.load_json(self._keys.saved_events, []))
        self._registered_event_ids: list[str] = list(storage.load_json(self._keys.registered_events, []))

        self._last_xp_gain: int | None = None
        self._xp_gain_timer: asyncio.TimerHandle | None = None
        self._mentor_tasks: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def profile(self) -> UserProfile:
        return self._profile

    @property
    def theme(self) -> Theme:
        return self._theme

    @property
    def last_xp_gain(self) -> int | None:
        return self._last_xp_gain

    @property
    def saved_event_ids(self) -> list[str]:
        return list(self._saved_event_ids)

    @property
    def registered_event_ids(self) -> list[str]:
        return list(self._registered_event_ids)

    def _load_profile(self) -> UserProfile:
        saved = self._storage.load_json(self._keys.profile)
        if saved is None:
            return self._default_profile()
        try:
            return UserProfile.model_validate(saved)
        except ValidationError:
            logger.warning("local_profile_invalid", key=self._keys.profile)
            return self._default_profile()

    def _default_profile(self) -> UserProfile:
        return UserProfile(xp_to_next_level=self._settings.initial_xp_threshold)

    def _commit(self, profile: UserProfile, remote: dict[str, Any] | None = None) -> UserProfile:
        self._profile = profile
        self._storage.save_json(self._keys.profile, profile.model_dump(mode="json"))
        if remote:
            self._sync.schedule(remote)
        self._changed()
        return profile

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    # ------------------------------------------------------------------
    # XP
    # ------------------------------------------------------------------

    def add_xp(self, amount: int) -> UserProfile:
        """Add XP, rolling over into the next level whenever the threshold is reached.

        Each level-up grows the threshold by ``level_growth_factor`` (floored).
        """
        if amount < 0:
            msg = "XP amount must be non-negative"
            raise ValueError(msg)

        prev = self._profile
        xp = prev.xp + amount
        level = prev.level
        threshold = prev.xp_to_next_level

        while xp >= threshold:
            xp -= threshold
            level += 1
            threshold = math.floor(threshold * self._settings.level_growth_factor)
            self._notifications.add(f"Synergy Bonus: Level {level} Reached!", "success")
            logger.info("level_up", user_id=prev.id, level=level)

        updated = prev.model_copy(update={"xp": xp, "level": level, "xp_to_next_level": threshold})
        self._commit(updated, {"xp": xp, "level": level, "xpToNextLevel": threshold})
        self._flash_xp_gain(amount)
        return updated

    def _flash_xp_gain(self, amount: int) -> None:
        self._last_xp_gain = amount
        if self._xp_gain_timer is not None:
            self._xp_gain_timer.cancel()
        loop = asyncio.get_running_loop()
        self._xp_gain_timer = loop.call_later(self._settings.xp_gain_display_seconds, self._clear_xp_gain)

    def _clear_xp_gain(self) -> None:
        self._xp_gain_timer = None
        self._last_xp_gain = None
        self._changed()

    # ------------------------------------------------------------------
    # Profile fields
    # ------------------------------------------------------------------

    def update_interests(self, interests: list[str]) -> UserProfile:
        updated = self._profile.model_copy(update={"interests": list(interests)})
        return self._commit(updated, {"interests": list(interests)})

    def update_preferences(self, **changes: Any) -> UserProfile:  # noqa: ANN401
        """Shallow-merge preference fields; a theme change applies immediately."""
        merged = Preferences.model_validate({**self._profile.preferences.model_dump(), **changes})
        if "theme" in changes:
            self._theme = merged.theme
        updated = self._profile.model_copy(update={"preferences": merged})
        return self._commit(updated, {"preferences": merged.model_dump(mode="json")})

    def toggle_theme(self) -> UserProfile:
        next_theme: Theme = "dark" if self._theme == "light" else "light"
        return self.update_preferences(theme=next_theme)

    def update_profile(self, **changes: Any) -> UserProfile:  # noqa: ANN401
        """Shallow-merge top-level fields; mirror name, bio, avatar, tagline and role."""
        merged = UserProfile.model_validate({**self._profile.model_dump(), **changes})
        remote = {}
        for field, meta_key in PROFILE_MIRROR_FIELDS.items():
            value = getattr(merged, field)
            remote[meta_key] = value.value if isinstance(value, UserRole) else value
        return self._commit(merged, remote)

    def update_social_profiles(self, profiles: list[SocialProfile]) -> UserProfile:
        updated = self._profile.model_copy(update={"social_profiles": list(profiles)})
        return self._commit(updated, {"social_profiles": _dump(profiles)})

    def update_experience(self, experience: list[Experience]) -> UserProfile:
        updated = self._profile.model_copy(update={"experience": list(experience)})
        return self._commit(updated, {"experience": _dump(experience)})

    # ------------------------------------------------------------------
    # Courses, pitches, badges
    # ------------------------------------------------------------------

    def enroll_course(self, course: CourseInput) -> UserProfile:
        """Enroll once per course id; repeated calls are no-ops."""
        if any(c.id == course.id for c in self._profile.enrolled_courses):
            return self._profile

        enrollment = EnrolledCourse(
            **course.model_dump(),
            status="enrolled",
            enrolled_at=datetime.now(timezone.utc),
        )
        courses = [*self._profile.enrolled_courses, enrollment]
        updated = self._profile.model_copy(update={"enrolled_courses": courses})
        self._commit(updated, {"enrolled_courses": _dump(courses)})
        self._notifications.add(f"Enrolled: {course.title}.", "success")
        return updated

    def complete_course(self, course_id: str) -> UserProfile:
        if not any(c.id == course_id for c in self._profile.enrolled_courses):
            return self._profile

        courses = [
            c.model_copy(update={"status": "completed"}) if c.id == course_id else c
            for c in self._profile.enrolled_courses
        ]
        updated = self._profile.model_copy(update={"enrolled_courses": courses})
        self._commit(updated, {"enrolled_courses": _dump(courses)})
        self._notifications.add("Certification achieved!", "success")
        return updated

    def save_pitch(self, pitch: VentureAnalysis) -> UserProfile:
        pitches = [pitch, *self._profile.pitches]
        updated = self._profile.model_copy(update={"pitches": pitches})
        return self._commit(updated, {"pitches": _dump(pitches)})

    def award_badge(self, badge: Badge) -> UserProfile:
        """Grant a badge once per id; only a new grant notifies."""
        if any(b.id == badge.id for b in self._profile.badges):
            return self._profile

        badges = [*self._profile.badges, badge]
        updated = self._profile.model_copy(update={"badges": badges})
        self._commit(updated, {"badges": _dump(badges)})
        self._notifications.add(f"Credential Gained: {badge.name}", "success")
        return updated

    # ------------------------------------------------------------------
    # Mentorship
    # ------------------------------------------------------------------

    def send_mentorship_request(self, mentor_id: str, mentor_name: str, mentor_role: str) -> UserProfile:
        """Create a pending request and schedule the mentor's simulated acceptance.

        At most one request exists per mentor; a repeat only warns.
        """
        if any(r.mentor_id == mentor_id for r in self._profile.mentorship_requests):
            self._notifications.add("Synergy request is already pending.", "warning")
            return self._profile

        request = MentorshipRequest(
            id=generate_token(),
            mentor_id=mentor_id,
            mentor_name=mentor_name,
            status="pending",
            request_date=datetime.now(timezone.utc),
        )
        requests = [*self._profile.mentorship_requests, request]
        updated = self._profile.model_copy(update={"mentorship_requests": requests})
        self._commit(updated, {"mentorship_requests": _dump(requests)})
        self._notifications.add(f"Synergy request dispatched to {mentor_name}.", "success")

        task = asyncio.create_task(self._simulate_acceptance(mentor_id, mentor_name, mentor_role))
        self._mentor_tasks[mentor_id] = task
        task.add_done_callback(lambda t: self._forget_mentor_task(mentor_id, t))
        return updated

    def _forget_mentor_task(self, mentor_id: str, task: asyncio.Task[None]) -> None:
        if self._mentor_tasks.get(mentor_id) is task:
            del self._mentor_tasks[mentor_id]

    async def _simulate_acceptance(self, mentor_id: str, mentor_name: str, mentor_role: str) -> None:
        await asyncio.sleep(self._settings.mentor_response_delay_seconds)
        try:
            if self._mentor_responder is None:
                response = DEFAULT_MENTOR_RESPONSE
            else:
                response = await self._mentor_responder(mentor_name, mentor_role, self._profile.interests)
        except Exception:
            logger.error("mentor_response_failed", mentor_id=mentor_id, exc_info=True)
            return

        if not any(r.mentor_id == mentor_id for r in self._profile.mentorship_requests):
            return

        requests = [
            r.model_copy(update={"status": "accepted", "mentor_response": response}) if r.mentor_id == mentor_id else r
            for r in self._profile.mentorship_requests
        ]
        updated = self._profile.model_copy(update={"mentorship_requests": requests})
        self._commit(updated, {"mentorship_requests": _dump(requests)})
        self._notifications.add(f"{mentor_name} accepted your synergy request!", "success")
        self.add_xp(self._settings.mentor_acceptance_xp)

    def withdraw_mentorship_request(self, mentor_id: str) -> UserProfile:
        """Remove a request and cancel its pending acceptance."""
        task = self._mentor_tasks.pop(mentor_id, None)
        if task is not None:
            task.cancel()

        if not any(r.mentor_id == mentor_id for r in self._profile.mentorship_requests):
            return self._profile

        requests = [r for r in self._profile.mentorship_requests if r.mentor_id != mentor_id]
        updated = self._profile.model_copy(update={"mentorship_requests": requests})
        self._commit(updated, {"mentorship_requests": _dump(requests)})
        self._notifications.add("Synergy request withdrawn.", "info")
        return updated

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def toggle_save_event(self, event_id: str) -> list[str]:
        if event_id in self._saved_event_ids:
            self._saved_event_ids = [e for e in self._saved_event_ids if e != event_id]
        else:
            self._saved_event_ids = [*self._saved_event_ids, event_id]
        self._storage.save_json(self._keys.saved_events, self._saved_event_ids)
        self._sync.schedule({"saved_event_ids": list(self._saved_event_ids)})
        self._changed()
        return self.saved_event_ids

    def toggle_register_event(self, event_id: str, event_title: str, *, confirm_release: bool = False) -> list[str]:
        """Register for an event (+XP), or release the seat when confirmed."""
        if event_id in self._registered_event_ids:
            if not confirm_release:
                return self.registered_event_ids
            self._registered_event_ids = [e for e in self._registered_event_ids if e != event_id]
            self._persist_registrations()
            self._notifications.add(f"Seat released for {event_title}.", "info")
            return self.registered_event_ids

        self._registered_event_ids = [*self._registered_event_ids, event_id]
        self._persist_registrations()
        xp = self._settings.event_registration_xp
        self._notifications.add(f"Synergy established with {event_title}! +{xp} XP", "success")
        self.add_xp(xp)
        return self.registered_event_ids

    def _persist_registrations(self) -> None:
        self._storage.save_json(self._keys.registered_events, self._registered_event_ids)
        self._sync.schedule({"registered_event_ids": list(self._registered_event_ids)})
        self._changed()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def hydrate(self, user_id: str, metadata: dict[str, Any]) -> UserProfile:
        """Merge the remote metadata bag over the local profile.

        Each field keeps its local value when the remote one is absent or of
        the wrong shape.
        """
        prev = self._profile
        meta = metadata or {}

        role = prev.role
        if meta.get("role"):
            try:
                role = UserRole(meta["role"])
            except ValueError:
                logger.warning("remote_metadata_invalid_role", role=meta["role"])

        preferences = prev.preferences
        if isinstance(meta.get("preferences"), dict):
            try:
                preferences = Preferences.model_validate(meta["preferences"])
            except ValidationError:
                logger.warning("remote_metadata_invalid_preferences")

        threshold = meta.get("xpToNextLevel")
        if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold <= 0:
            threshold = prev.xp_to_next_level

        updated = prev.model_copy(
            update={
                "id": user_id,
                "name": meta.get("full_name") or prev.name,
                "role": role,
                "interests": meta["interests"] if isinstance(meta.get("interests"), list) else prev.interests,
                "xp": meta["xp"] if isinstance(meta.get("xp"), int) else prev.xp,
                "level": meta["level"] if isinstance(meta.get("level"), int) else prev.level,
                "badges": _validated_list(_BADGES, meta.get("badges"), prev.badges),
                "avatar": meta.get("avatar") or prev.avatar,
                "tagline": meta.get("tagline") or prev.tagline,
                "xp_to_next_level": threshold,
                "enrolled_courses": _validated_list(_COURSES, meta.get("enrolled_courses"), prev.enrolled_courses),
                "social_profiles": _validated_list(_SOCIAL, meta.get("social_profiles"), prev.social_profiles),
                "experience": _validated_list(_EXPERIENCE, meta.get("experience"), prev.experience),
                "mentorship_requests": _validated_list(
                    _REQUESTS, meta.get("mentorship_requests"), prev.mentorship_requests
                ),
                "pitches": _validated_list(_PITCHES, meta.get("pitches"), prev.pitches),
                "bio": meta.get("bio") or prev.bio,
                "preferences": preferences,
            }
        )
        self._theme = updated.preferences.theme

        if isinstance(meta.get("saved_event_ids"), list):
            self._saved_event_ids = list(meta["saved_event_ids"])
            self._storage.save_json(self._keys.saved_events, self._saved_event_ids)
        if isinstance(meta.get("registered_event_ids"), list):
            self._registered_event_ids = list(meta["registered_event_ids"])
            self._storage.save_json(self._keys.registered_events, self._registered_event_ids)

        logger.info("profile_hydrated", user_id=user_id)
        return self._commit(updated)

    def reset(self) -> UserProfile:
        """Return to the guest profile and forget all local keys."""
        self.cancel_timers()
        self._sync.cancel()
        for key in self._keys.all():
            self._storage.remove_item(key)
        self._profile = self._default_profile()
        self._theme = self._profile.preferences.theme
        self._saved_event_ids = []
        self._registered_event_ids = []
        self._last_xp_gain = None
        self._changed()
        return self._profile

    def cancel_timers(self) -> None:
        """Cancel outstanding mentor acceptances and the XP-gain flash."""
        for task in self._mentor_tasks.values():
            task.cancel()
        self._mentor_tasks.clear()
        if self._xp_gain_timer is not None:
            self._xp_gain_timer.cancel()
            self._xp_gain_timer = None
