"""Profile router: all /api/v1/me/* endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from smartedu.auth.dependencies import CurrentAccount, get_current_account
from smartedu.controller import AppController
from smartedu.dependencies import get_controller, get_registry
from smartedu.profile.models import Badge, CourseInput, Experience, SocialProfile
from smartedu.profile.schemas import (
    EventRegistrationRequest,
    InterestsUpdateRequest,
    MentorshipRequestCreate,
    PitchRequest,
    PitchResponse,
    PreferencesUpdateRequest,
    ProfileStateResponse,
    ProfileUpdateRequest,
    SnapshotResponse,
    XPGrantRequest,
)
from smartedu.registry import ControllerRegistry

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/me", tags=["Profile"])


def _state(controller: AppController) -> ProfileStateResponse:
    return ProfileStateResponse(**controller.profile_snapshot())


@router.get("", response_model=SnapshotResponse)
async def get_me(controller: AppController = Depends(get_controller)) -> SnapshotResponse:
    """Full client view: profile, theme, event lists, session and notifications."""
    return SnapshotResponse(**controller.snapshot())


@router.patch("", response_model=ProfileStateResponse)
async def update_me(
    body: ProfileUpdateRequest,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.update_profile(**body.model_dump(exclude_unset=True, exclude_none=True))
    return _state(controller)


@router.patch("/preferences", response_model=ProfileStateResponse)
async def update_preferences(
    body: PreferencesUpdateRequest,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.update_preferences(**body.model_dump(exclude_unset=True, exclude_none=True))
    return _state(controller)


@router.post("/theme/toggle", response_model=ProfileStateResponse)
async def toggle_theme(controller: AppController = Depends(get_controller)) -> ProfileStateResponse:
    controller.store.toggle_theme()
    return _state(controller)


@router.put("/interests", response_model=ProfileStateResponse)
async def update_interests(
    body: InterestsUpdateRequest,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.update_interests(body.interests)
    return _state(controller)


@router.post("/xp", response_model=ProfileStateResponse)
async def add_xp(
    body: XPGrantRequest,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.add_xp(body.amount)
    return _state(controller)


# ---------------------------------------------------------------------------
# Courses, credentials, career
# ---------------------------------------------------------------------------


@router.post("/courses", response_model=ProfileStateResponse)
async def enroll_course(
    body: CourseInput,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.enroll_course(body)
    return _state(controller)


@router.post("/courses/{course_id}/complete", response_model=ProfileStateResponse)
async def complete_course(
    course_id: str,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.complete_course(course_id)
    return _state(controller)


@router.put("/social-profiles", response_model=ProfileStateResponse)
async def update_social_profiles(
    body: list[SocialProfile],
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.update_social_profiles(body)
    return _state(controller)


@router.put("/experience", response_model=ProfileStateResponse)
async def update_experience(
    body: list[Experience],
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.update_experience(body)
    return _state(controller)


@router.post("/badges", response_model=ProfileStateResponse)
async def award_badge(
    body: Badge,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.award_badge(body)
    return _state(controller)


@router.post("/pitches", response_model=PitchResponse)
async def analyze_venture(
    body: PitchRequest,
    controller: AppController = Depends(get_controller),
) -> PitchResponse:
    """Run the Venture Lab on a concept. ``pitch`` is null when it was rejected or failed."""
    pitch = await controller.ventures.analyze(body.concept)
    return PitchResponse(pitch=pitch, state=_state(controller))


# ---------------------------------------------------------------------------
# Mentorship
# ---------------------------------------------------------------------------


@router.post("/mentorship-requests", response_model=ProfileStateResponse)
async def send_mentorship_request(
    body: MentorshipRequestCreate,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.send_mentorship_request(body.mentor_id, body.mentor_name, body.mentor_role)
    return _state(controller)


@router.delete("/mentorship-requests/{mentor_id}", response_model=ProfileStateResponse)
async def withdraw_mentorship_request(
    mentor_id: str,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.withdraw_mentorship_request(mentor_id)
    return _state(controller)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@router.post("/events/{event_id}/save", response_model=ProfileStateResponse)
async def toggle_save_event(
    event_id: str,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    controller.store.toggle_save_event(event_id)
    return _state(controller)


@router.post("/events/{event_id}/register", response_model=ProfileStateResponse)
async def toggle_register_event(
    event_id: str,
    body: EventRegistrationRequest,
    controller: AppController = Depends(get_controller),
) -> ProfileStateResponse:
    """Register for an event, or release the seat when ``confirm_release`` is set."""
    controller.store.toggle_register_event(event_id, body.title, confirm_release=body.confirm_release)
    return _state(controller)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.post("/sign-out", status_code=204)
async def sign_out(
    account: CurrentAccount = Depends(get_current_account),
    registry: ControllerRegistry = Depends(get_registry),
) -> None:
    """Sign out and dispose of the account's controller."""
    controller = registry.get(account.id)
    if controller is None:
        return
    try:
        await controller.sign_out()
    finally:
        await registry.remove(account.id)
    logger.info("account_signed_out", account_id=account.id)
