"""Key-value persistence read once at startup and written on every mutation.

Values are JSON-encoded strings stored under keys namespaced by a fixed
prefix (``<prefix>_profile``, ``<prefix>_saved_events``,
``<prefix>_registered_events``).
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class StorageKeys:
    """The three keys used for a user's local state."""

    prefix: str = "smartedu_user_data"

    @property
    def profile(self) -> str:
        return f"{self.prefix}_profile"

    @property
    def saved_events(self) -> str:
        return f"{self.prefix}_saved_events"

    @property
    def registered_events(self) -> str:
        return f"{self.prefix}_registered_events"

    def all(self) -> tuple[str, str, str]:
        return (self.profile, self.saved_events, self.registered_events)


class LocalStorage(ABC):
    """String key-value store with JSON helpers."""

    @abstractmethod
    def get_item(self, key: str) -> str | None: ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove_item(self, key: str) -> None: ...

    def load_json(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        """Decode a stored value, falling back to ``default`` when missing or corrupt."""
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("local_storage_corrupt_value", key=key)
            return default

    def save_json(self, key: str, value: Any) -> None:  # noqa: ANN401
        self.set_item(key, json.dumps(value))


class MemoryStorage(LocalStorage):
    """In-process storage, lost when the process exits."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStorage(LocalStorage):
    """One file per key under a directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self._root / f"{key}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
