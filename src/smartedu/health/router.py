"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from smartedu.config import get_settings
from smartedu.database import get_session
from smartedu.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Report each backend separately.

    The API keeps answering from fallback memory when Postgres or Redis is
    down, so a failed check makes the service ``degraded``, not unavailable.
    """
    checks: dict[str, str] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    realtime = getattr(request.app.state, "realtime", None)
    checks["realtime"] = "ok" if realtime is not None and realtime.running else "stopped"

    registry = getattr(request.app.state, "registry", None)
    return {
        "status": "ready" if all(v == "ok" for v in checks.values()) else "degraded",
        "checks": checks,
        "active_controllers": len(registry) if registry is not None else 0,
    }


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
