"""Profile data model: the current user's view of themselves."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    SCHOOL = "SCHOOL"
    MENTOR = "MENTOR"
    ADMIN = "ADMIN"


Theme = Literal["light", "dark"]


class Preferences(BaseModel):
    """Flat preference record, merged shallowly on update."""

    theme: Theme = "dark"
    notifications_enabled: bool = True
    public_profile: bool = True
    marketing_emails: bool = False
    compact_mode: bool = False


class Badge(BaseModel):
    id: str
    name: str
    icon: str = ""
    color: str = ""
    description: str = ""
    issuer: str | None = None
    image_url: str | None = None
    url: str | None = None


class SocialProfile(BaseModel):
    platform: str
    url: str = ""
    icon: str = ""


class CourseInput(BaseModel):
    """A course as offered for enrollment, before status and timestamp are set."""

    id: str
    title: str
    provider: str = "External"
    link: str = ""
    domain: str | None = None


class EnrolledCourse(CourseInput):
    status: Literal["enrolled", "completed"] = "enrolled"
    enrolled_at: datetime


class Experience(BaseModel):
    id: str
    company: str
    role: str
    duration: str = ""
    description: str = ""
    domain: str | None = None


class MentorshipRequest(BaseModel):
    """Request to a mentor; pending until accepted or declined (both terminal)."""

    id: str
    mentor_id: str
    mentor_name: str
    status: Literal["pending", "accepted", "declined"] = "pending"
    request_date: datetime
    initial_message: str | None = None
    mentor_response: str | None = None


class VentureAnalysis(BaseModel):
    id: str
    concept: str
    analysis: str
    visual_url: str | None = None
    date: str


def default_social_profiles() -> list[SocialProfile]:
    return [
        SocialProfile(platform="GitHub", icon="code"),
        SocialProfile(platform="LinkedIn", icon="work"),
        SocialProfile(platform="Portfolio", icon="language"),
    ]


class UserProfile(BaseModel):
    """The signed-in user's profile.

    ``xp`` stays within ``[0, xp_to_next_level)``; crossing the threshold
    increments ``level`` and rolls the remainder over.
    """

    id: str | None = None
    name: str = "Guest Innovator"
    role: UserRole = UserRole.STUDENT
    level: int = 1
    xp: int = 0
    xp_to_next_level: int = 1000
    interests: list[str] = Field(default_factory=list)
    avatar: str = "https://api.dicebear.com/7.x/avataaars/svg?seed=guest"
    badges: list[Badge] = Field(default_factory=list)
    enrolled_courses: list[EnrolledCourse] = Field(default_factory=list)
    social_profiles: list[SocialProfile] = Field(default_factory=default_social_profiles)
    experience: list[Experience] = Field(default_factory=list)
    mentorship_requests: list[MentorshipRequest] = Field(default_factory=list)
    pitches: list[VentureAnalysis] = Field(default_factory=list)
    bio: str | None = None
    tagline: str | None = "Future Founder"
    preferences: Preferences = Field(default_factory=Preferences)


# Top-level profile fields that update_profile() mirrors to the metadata bag.
PROFILE_MIRROR_FIELDS: dict[str, str] = {
    "name": "full_name",
    "bio": "bio",
    "avatar": "avatar",
    "tagline": "tagline",
    "role": "role",
}
