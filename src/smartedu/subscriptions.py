"""Handles returned by subscribe-style APIs."""

from __future__ import annotations

from collections.abc import Callable


class Subscription:
    """Idempotent handle whose ``unsubscribe()`` runs a teardown callback once."""

    def __init__(self, teardown: Callable[[], None]) -> None:
        self._teardown: Callable[[], None] | None = teardown

    @property
    def active(self) -> bool:
        return self._teardown is not None

    def unsubscribe(self) -> None:
        teardown, self._teardown = self._teardown, None
        if teardown is not None:
            teardown()
