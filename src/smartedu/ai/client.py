"""Generative-AI boundary: mentor replies, venture analysis and venture visuals.

Talks to any OpenAI-compatible endpoint through the official async client.
Transient overloads are retried with exponential backoff; everything else
surfaces as ``AIServiceError``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import openai
import structlog
from openai import AsyncOpenAI

from smartedu.config import Settings, get_settings
from smartedu.errors import AIOverloadedError, AIServiceError

logger = structlog.get_logger()

T = TypeVar("T")

MENTOR_FALLBACK = "I'm excited to support your journey within our innovation network."
ANALYSIS_FALLBACK = "Analysis unavailable."


def is_overloaded(exc: BaseException) -> bool:
    """True for 503-class errors that are worth retrying."""
    if isinstance(exc, AIOverloadedError):
        return True
    if isinstance(exc, openai.APIStatusError) and exc.status_code == 503:
        return True
    message = str(exc)
    return "503" in message or "overloaded" in message.lower()


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 1.0,
) -> T:
    """Call ``fn``, retrying overload errors up to ``retries`` times.

    The delay doubles after every attempt (1 s, 2 s, 4 s by default). Any other
    error is raised immediately.
    """
    attempts_left = retries
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_overloaded(exc) or attempts_left <= 0:
                raise
            logger.warning("ai_overloaded_retrying", delay=delay, attempts_left=attempts_left)
            await asyncio.sleep(delay)
            attempts_left -= 1
            delay *= 2


class AIClient:
    """Thin wrapper around ``AsyncOpenAI`` with the application's prompts."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.ai_api_key,
            base_url=self._settings.ai_base_url,
            max_retries=0,
        )

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await with_retry(
                fn,
                retries=self._settings.ai_max_retries,
                delay=self._settings.ai_retry_base_delay_seconds,
            )
        except openai.OpenAIError as e:
            if is_overloaded(e):
                raise AIOverloadedError(str(e)) from e
            raise AIServiceError(str(e)) from e

    async def _complete(self, model: str, system: str, prompt: str) -> str | None:
        response = await self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        return response.choices[0].message.content

    async def generate_mentor_response(self, mentor_name: str, mentor_role: str, interests: list[str]) -> str:
        prompt = (
            f"Mentor: {mentor_name}, Role: {mentor_role}\n"
            f"Student Interests: {', '.join(interests)}\n\n"
            "Task: Write a welcoming response as this mentor, accepting a request. Mention T-Hub/WE Hub synergy."
        )
        text = await self._retry(
            lambda: self._complete(
                self._settings.ai_text_model,
                "You are an institutional mentor at T-Hub/WE Hub. Your tone is professional and encouraging.",
                prompt,
            )
        )
        return text or MENTOR_FALLBACK

    async def get_startup_risk_analysis(self, concept: str) -> str:
        text = await self._retry(
            lambda: self._complete(
                self._settings.ai_analysis_model,
                "You are a professional venture capitalist at T-Hub. Focus on Money, Market, Motivation, "
                "Manpower, Mentor, Method, Planning, and Product.",
                f"Analyze the following startup idea using T-Hub's 6M2P Framework: {concept}",
            )
        )
        return text or ANALYSIS_FALLBACK

    async def generate_startup_visual(self, concept: str) -> str | None:
        """Return a logo for the concept as a PNG data URL, or None."""
        prompt = (
            "A professional, minimal, high-tech logo for an innovation venture based on this concept: "
            f"{concept}. Solid background, sharp edges, institutional aesthetic."
        )

        async def generate() -> str | None:
            response = await self._client.images.generate(model=self._settings.ai_image_model, prompt=prompt, n=1)
            if not response.data:
                return None
            b64 = response.data[0].b64_json
            return f"data:image/png;base64,{b64}" if b64 else None

        return await self._retry(generate)
