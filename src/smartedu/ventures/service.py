"""Venture Lab: institutional analysis of a startup concept."""

from __future__ import annotations

import asyncio
from datetime import date

import structlog

from smartedu.ai.client import AIClient
from smartedu.config import Settings, get_settings
from smartedu.notifications.queue import NotificationQueue
from smartedu.profile.models import VentureAnalysis
from smartedu.profile.store import ProfileStore
from smartedu.tokens import generate_token

logger = structlog.get_logger()


class VentureLab:
    def __init__(
        self,
        ai: AIClient | None,
        store: ProfileStore,
        notifications: NotificationQueue,
        settings: Settings | None = None,
    ) -> None:
        self._ai = ai
        self._store = store
        self._notifications = notifications
        self._settings = settings or get_settings()

    async def analyze(self, concept: str) -> VentureAnalysis | None:
        """Run the risk analysis and the visual concurrently, then save the pitch.

        Returns None when the concept is blank or the AI service fails.
        """
        if not concept.strip():
            self._notifications.add("Please provide a concept narrative first.", "warning")
            return None

        try:
            if self._ai is None:
                msg = "AI client is not configured"
                raise RuntimeError(msg)
            analysis, visual_url = await asyncio.gather(
                self._ai.get_startup_risk_analysis(concept),
                self._ai.generate_startup_visual(concept),
            )
        except Exception:
            logger.error("venture_analysis_failed", exc_info=True)
            self._notifications.add("Venture Lab systems are overloaded.", "error")
            return None

        pitch = VentureAnalysis(
            id=generate_token(),
            concept=concept,
            analysis=analysis,
            visual_url=visual_url,
            date=date.today().isoformat(),
        )
        self._store.save_pitch(pitch)
        xp = self._settings.venture_analysis_xp
        self._store.add_xp(xp)
        self._notifications.add(f"Institutional analysis complete. +{xp} XP", "success")
        logger.info("venture_analysis_saved", pitch_id=pitch.id)
        return pitch
