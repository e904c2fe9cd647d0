"""Error taxonomy shared by the service boundaries."""

from __future__ import annotations


class SmartEduError(Exception):
    """Base class for all application errors."""


class BackendUnavailableError(SmartEduError):
    """The relational store, metadata store or realtime channel could not be reached."""


class AIServiceError(SmartEduError):
    """The generative-AI service failed."""


class AIOverloadedError(AIServiceError):
    """Transient overload (503-class) reported by the generative-AI service."""
