"""Shared Redis client for realtime change notifications and readiness checks.

Responses stay as bytes; the realtime listener decodes its own payloads.
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 20) -> None:
    """Create the client. Pub/sub holds one connection; publishes share the rest."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(url, max_connections=max_connections)  # type: ignore[no-untyped-call]


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """Return the client created by ``init_redis()``."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client
