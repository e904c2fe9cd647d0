"""Local durable storage for the client view of a user."""

from smartedu.storage.local import FileStorage, LocalStorage, MemoryStorage, StorageKeys

__all__ = ["FileStorage", "LocalStorage", "MemoryStorage", "StorageKeys"]
