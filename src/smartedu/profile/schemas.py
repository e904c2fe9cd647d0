"""Request/response schemas for the /api/v1/me endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from smartedu.profile.models import Theme, UserRole, VentureAnalysis


class ProfileUpdateRequest(BaseModel):
    """Shallow update of top-level profile fields. Omitted or null fields are left as they are."""

    name: str | None = Field(None, min_length=1, max_length=128)
    bio: str | None = Field(None, max_length=1000)
    avatar: str | None = Field(None, max_length=2048)
    tagline: str | None = Field(None, max_length=128)
    role: UserRole | None = None


class PreferencesUpdateRequest(BaseModel):
    theme: Theme | None = None
    notifications_enabled: bool | None = None
    public_profile: bool | None = None
    marketing_emails: bool | None = None
    compact_mode: bool | None = None


class InterestsUpdateRequest(BaseModel):
    interests: list[str]


class XPGrantRequest(BaseModel):
    amount: int = Field(..., ge=0)


class MentorshipRequestCreate(BaseModel):
    mentor_id: str = Field(..., min_length=1)
    mentor_name: str = Field(..., min_length=1)
    mentor_role: str = ""


class EventRegistrationRequest(BaseModel):
    title: str
    confirm_release: bool = False


class PitchRequest(BaseModel):
    concept: str


class ProfileStateResponse(BaseModel):
    """Profile slice of the controller snapshot."""

    profile: dict[str, Any]
    last_xp_gain: int | None = None
    theme: Theme
    saved_event_ids: list[str]
    registered_event_ids: list[str]


class SnapshotResponse(ProfileStateResponse):
    loading: bool
    user_id: str | None = None
    notifications: list[dict[str, Any]]


class PitchResponse(BaseModel):
    pitch: VentureAnalysis | None = None
    state: ProfileStateResponse
