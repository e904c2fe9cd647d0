"""Profile store: XP economy, idempotent mutations, mentorship and session lifecycle."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import messages
from smartedu.config import Settings
from smartedu.notifications.queue import NotificationQueue
from smartedu.profile.cloud_sync import DebouncedCloudSync
from smartedu.profile.models import Badge, CourseInput, Experience, SocialProfile, UserRole
from smartedu.profile.store import DEFAULT_MENTOR_RESPONSE, ProfileStore
from smartedu.storage.local import MemoryStorage, StorageKeys


class TestAddXP:
    @pytest.mark.asyncio
    async def test_below_threshold(self, store: ProfileStore) -> None:
        profile = store.add_xp(100)
        assert (profile.level, profile.xp, profile.xp_to_next_level) == (1, 100, 1000)
        assert store.profile is profile

    @pytest.mark.asyncio
    async def test_level_up_rolls_over(self, store: ProfileStore, notifications: NotificationQueue) -> None:
        store.add_xp(950)
        profile = store.add_xp(100)
        assert (profile.level, profile.xp, profile.xp_to_next_level) == (2, 50, 1200)
        assert "Synergy Bonus: Level 2 Reached!" in messages(notifications)

    @pytest.mark.asyncio
    async def test_threshold_grows_by_factor_floored(self, store: ProfileStore) -> None:
        store.add_xp(1000)
        profile = store.add_xp(1200)
        assert (profile.level, profile.xp, profile.xp_to_next_level) == (3, 0, 1440)

    @pytest.mark.asyncio
    async def test_large_grant_keeps_invariant(self, store: ProfileStore) -> None:
        profile = store.add_xp(2500)
        assert profile.level == 3
        assert profile.xp == 300
        assert profile.xp_to_next_level == 1440
        assert 0 <= profile.xp < profile.xp_to_next_level

    @pytest.mark.asyncio
    async def test_cumulative_sequence(self, store: ProfileStore) -> None:
        for amount in [5, 150, 200, 100, 50, 600, 5, 200]:
            store.add_xp(amount)
        profile = store.profile
        assert profile.level == 2
        assert profile.xp == 1310 - 1000
        assert 0 <= profile.xp < profile.xp_to_next_level

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, store: ProfileStore) -> None:
        with pytest.raises(ValueError):
            store.add_xp(-1)

    @pytest.mark.asyncio
    async def test_last_xp_gain_resets(self, store: ProfileStore) -> None:
        store.add_xp(50)
        assert store.last_xp_gain == 50
        await asyncio.sleep(0.1)
        assert store.last_xp_gain is None

    @pytest.mark.asyncio
    async def test_syncs_xp_fields(self, store: ProfileStore, cloud_sync: DebouncedCloudSync) -> None:
        store.add_xp(1000)
        assert cloud_sync.pending == {"xp": 0, "level": 2, "xpToNextLevel": 1200}

    @pytest.mark.asyncio
    async def test_persists_locally(self, store: ProfileStore, storage: MemoryStorage, keys: StorageKeys) -> None:
        store.add_xp(42)
        assert storage.load_json(keys.profile)["xp"] == 42


class TestCourses:
    @pytest.mark.asyncio
    async def test_enroll_is_idempotent(self, store: ProfileStore, notifications: NotificationQueue) -> None:
        course = CourseInput(id="c1", title="Intro to AI")
        store.enroll_course(course)
        store.enroll_course(course)
        assert len(store.profile.enrolled_courses) == 1
        assert store.profile.enrolled_courses[0].status == "enrolled"
        assert messages(notifications) == ["Enrolled: Intro to AI."]

    @pytest.mark.asyncio
    async def test_complete_course(self, store: ProfileStore, notifications: NotificationQueue) -> None:
        store.enroll_course(CourseInput(id="c1", title="Intro to AI"))
        store.complete_course("c1")
        assert store.profile.enrolled_courses[0].status == "completed"
        assert messages(notifications)[0] == "Certification achieved!"

    @pytest.mark.asyncio
    async def test_complete_unknown_course_is_noop(
        self, store: ProfileStore, notifications: NotificationQueue, cloud_sync: DebouncedCloudSync
    ) -> None:
        before = store.profile
        assert store.complete_course("missing") is before
        assert notifications.items == []
        assert cloud_sync.pending == {}


class TestBadges:
    @pytest.mark.asyncio
    async def test_award_once(self, store: ProfileStore, notifications: NotificationQueue) -> None:
        badge = Badge(id="b1", name="Pioneer")
        store.award_badge(badge)
        store.award_badge(badge)
        assert [b.id for b in store.profile.badges] == ["b1"]
        assert messages(notifications) == ["Credential Gained: Pioneer"]


class TestProfileFields:
    @pytest.mark.asyncio
    async def test_update_profile_mirrors_subset(self, store: ProfileStore, cloud_sync: DebouncedCloudSync) -> None:
        store.update_profile(name="Ada", bio="Builder", role=UserRole.MENTOR)
        assert store.profile.name == "Ada"
        assert cloud_sync.pending == {
            "full_name": "Ada",
            "bio": "Builder",
            "avatar": store.profile.avatar,
            "tagline": "Future Founder",
            "role": "MENTOR",
        }

    @pytest.mark.asyncio
    async def test_update_interests(self, store: ProfileStore, cloud_sync: DebouncedCloudSync) -> None:
        store.update_interests(["AI", "Fintech"])
        assert store.profile.interests == ["AI", "Fintech"]
        assert cloud_sync.pending == {"interests": ["AI", "Fintech"]}

    @pytest.mark.asyncio
    async def test_replace_social_and_experience(self, store: ProfileStore, cloud_sync: DebouncedCloudSync) -> None:
        store.update_social_profiles([SocialProfile(platform="GitHub", url="https://github.com/ada")])
        store.update_experience([Experience(id="x1", company="T-Hub", role="Intern")])
        assert store.profile.social_profiles[0].url == "https://github.com/ada"
        assert store.profile.experience[0].company == "T-Hub"
        assert set(cloud_sync.pending) == {"social_profiles", "experience"}

    @pytest.mark.asyncio
    async def test_preferences_shallow_merge(self, store: ProfileStore) -> None:
        store.update_preferences(compact_mode=True)
        store.update_preferences(theme="light")
        prefs = store.profile.preferences
        assert prefs.compact_mode is True
        assert prefs.theme == "light"
        assert store.theme == "light"

    @pytest.mark.asyncio
    async def test_toggle_theme(self, store: ProfileStore, cloud_sync: DebouncedCloudSync) -> None:
        assert store.theme == "dark"
        store.toggle_theme()
        assert store.theme == "light"
        assert cloud_sync.pending["preferences"]["theme"] == "light"
        store.toggle_theme()
        assert store.profile.preferences.theme == "dark"


class TestMentorship:
    @pytest.mark.asyncio
    async def test_request_then_acceptance(self, store: ProfileStore, notifications: NotificationQueue) -> None:
        store.send_mentorship_request("m1", "Dr. Rao", "Partner")
        request = store.profile.mentorship_requests[0]
        assert request.status == "pending"
        assert len(request.id) == 9
        assert messages(notifications) == ["Synergy request dispatched to Dr. Rao."]

        await asyncio.sleep(0.15)
        request = store.profile.mentorship_requests[0]
        assert request.status == "accepted"
        assert request.mentor_response == DEFAULT_MENTOR_RESPONSE
        assert store.profile.xp == 200
        assert "Dr. Rao accepted your synergy request!" in messages(notifications)

    @pytest.mark.asyncio
    async def test_duplicate_request_warns(self, store: ProfileStore, notifications: NotificationQueue) -> None:
        store.send_mentorship_request("m1", "Dr. Rao", "Partner")
        store.send_mentorship_request("m1", "Dr. Rao", "Partner")
        assert len(store.profile.mentorship_requests) == 1
        assert notifications.items[0].message == "Synergy request is already pending."
        assert notifications.items[0].type == "warning"
        store.cancel_timers()

    @pytest.mark.asyncio
    async def test_withdraw_cancels_acceptance(self, store: ProfileStore) -> None:
        store.send_mentorship_request("m1", "Dr. Rao", "Partner")
        store.withdraw_mentorship_request("m1")
        await asyncio.sleep(0.15)
        assert store.profile.mentorship_requests == []
        assert store.profile.xp == 0

    @pytest.mark.asyncio
    async def test_responder_text_is_used(
        self,
        storage: MemoryStorage,
        cloud_sync: DebouncedCloudSync,
        notifications: NotificationQueue,
        settings: Settings,
    ) -> None:
        responder = AsyncMock(return_value="Welcome aboard.")
        store = ProfileStore(storage, cloud_sync, notifications, settings=settings, mentor_responder=responder)
        store.update_interests(["AI"])
        store.send_mentorship_request("m1", "Dr. Rao", "Partner")
        await asyncio.sleep(0.15)
        responder.assert_awaited_once_with("Dr. Rao", "Partner", ["AI"])
        assert store.profile.mentorship_requests[0].mentor_response == "Welcome aboard."

    @pytest.mark.asyncio
    async def test_responder_failure_leaves_request_pending(
        self,
        storage: MemoryStorage,
        cloud_sync: DebouncedCloudSync,
        notifications: NotificationQueue,
        settings: Settings,
    ) -> None:
        responder = AsyncMock(side_effect=RuntimeError("503 overloaded"))
        store = ProfileStore(storage, cloud_sync, notifications, settings=settings, mentor_responder=responder)
        store.send_mentorship_request("m1", "Dr. Rao", "Partner")
        await asyncio.sleep(0.15)
        assert store.profile.mentorship_requests[0].status == "pending"
        assert store.profile.xp == 0


class TestEvents:
    @pytest.mark.asyncio
    async def test_save_toggles(self, store: ProfileStore, storage: MemoryStorage, keys: StorageKeys) -> None:
        assert store.toggle_save_event("e1") == ["e1"]
        assert storage.load_json(keys.saved_events) == ["e1"]
        assert store.toggle_save_event("e1") == []

    @pytest.mark.asyncio
    async def test_register_grants_xp(self, store: ProfileStore, notifications: NotificationQueue) -> None:
        store.toggle_register_event("e1", "Demo Day")
        assert store.registered_event_ids == ["e1"]
        assert store.profile.xp == 150
        assert "Synergy established with Demo Day! +150 XP" in messages(notifications)

    @pytest.mark.asyncio
    async def test_release_requires_confirmation(
        self, store: ProfileStore, notifications: NotificationQueue, cloud_sync: DebouncedCloudSync
    ) -> None:
        store.toggle_register_event("e1", "Demo Day")
        store.toggle_register_event("e1", "Demo Day")
        assert store.registered_event_ids == ["e1"]

        store.toggle_register_event("e1", "Demo Day", confirm_release=True)
        assert store.registered_event_ids == []
        assert notifications.items[0].message == "Seat released for Demo Day."
        assert notifications.items[0].type == "info"
        assert cloud_sync.pending["registered_event_ids"] == []
        assert store.profile.xp == 150


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_hydrate_merges_remote_over_local(self, store: ProfileStore) -> None:
        store.update_interests(["Robotics"])
        store.hydrate(
            "user-1",
            {
                "full_name": "Ada",
                "xp": 300,
                "level": 2,
                "xpToNextLevel": 1200,
                "badges": "not-a-list",
                "preferences": {"theme": "light"},
                "saved_event_ids": ["e1"],
            },
        )
        profile = store.profile
        assert profile.id == "user-1"
        assert profile.name == "Ada"
        assert (profile.level, profile.xp, profile.xp_to_next_level) == (2, 300, 1200)
        assert profile.interests == ["Robotics"]
        assert profile.badges == []
        assert store.theme == "light"
        assert store.saved_event_ids == ["e1"]

    @pytest.mark.asyncio
    async def test_hydrate_ignores_invalid_records(self, store: ProfileStore) -> None:
        store.award_badge(Badge(id="b1", name="Pioneer"))
        store.hydrate("user-1", {"badges": [{"unexpected": True}], "role": "ASTRONAUT"})
        assert [b.id for b in store.profile.badges] == ["b1"]
        assert store.profile.role == UserRole.STUDENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold", ["1200", -5, 0, True, 12.5])
    async def test_hydrate_keeps_local_threshold_when_remote_is_invalid(
        self, store: ProfileStore, threshold: object
    ) -> None:
        store.hydrate("user-1", {"xpToNextLevel": threshold})
        assert store.profile.xp_to_next_level == 1000

        store.add_xp(1000)
        assert store.profile.level == 2
        assert store.profile.xp_to_next_level == 1200

    @pytest.mark.asyncio
    async def test_reset_clears_everything(
        self, store: ProfileStore, storage: MemoryStorage, keys: StorageKeys
    ) -> None:
        store.add_xp(10)
        store.toggle_save_event("e1")
        store.toggle_register_event("e2", "Hackathon")
        profile = store.reset()
        assert profile.name == "Guest Innovator"
        assert profile.xp == 0
        assert store.saved_event_ids == []
        assert store.registered_event_ids == []
        assert all(storage.get_item(k) is None for k in keys.all())

    @pytest.mark.asyncio
    async def test_profile_survives_restart(
        self,
        store: ProfileStore,
        storage: MemoryStorage,
        cloud_sync: DebouncedCloudSync,
        notifications: NotificationQueue,
        settings: Settings,
    ) -> None:
        store.add_xp(120)
        store.toggle_save_event("e1")
        reloaded = ProfileStore(storage, cloud_sync, notifications, settings=settings)
        assert reloaded.profile.xp == 120
        assert reloaded.saved_event_ids == ["e1"]

    def test_corrupt_local_profile_falls_back(
        self,
        storage: MemoryStorage,
        keys: StorageKeys,
        cloud_sync: DebouncedCloudSync,
        notifications: NotificationQueue,
        settings: Settings,
    ) -> None:
        storage.set_item(keys.profile, "{not json")
        store = ProfileStore(storage, cloud_sync, notifications, settings=settings)
        assert store.profile.name == "Guest Innovator"
