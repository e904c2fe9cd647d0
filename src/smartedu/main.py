"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from smartedu.config import get_settings
from smartedu.database import close_db, init_db
from smartedu.feed.realtime import RealtimeChannel
from smartedu.feed.router import router as feed_router
from smartedu.health.router import router as health_router
from smartedu.middleware import setup_middleware
from smartedu.notifications.router import router as notifications_router
from smartedu.profile.router import router as profile_router
from smartedu.redis_client import close_redis, get_redis, init_redis
from smartedu.registry import ControllerRegistry, build_controller_factory
from smartedu.ws.router import router as ws_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url, settings.redis_max_connections)

    # Redis pub/sub -> feed synchronizers
    realtime = RealtimeChannel(get_redis(), settings.realtime_channel)
    realtime_task = asyncio.create_task(realtime.start())
    app.state.realtime = realtime

    registry = ControllerRegistry(
        build_controller_factory(realtime, settings),
        idle_seconds=settings.controller_idle_seconds,
    )
    sweeper_task = asyncio.create_task(registry.run_sweeper(settings.controller_sweep_interval_seconds))
    app.state.registry = registry

    yield

    sweeper_task.cancel()
    try:
        await sweeper_task
    except asyncio.CancelledError:
        pass
    await registry.close()

    await realtime.stop()
    realtime_task.cancel()
    try:
        await realtime_task
    except asyncio.CancelledError:
        pass

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="SmartEdu API",
        description="Backend for the SmartEdu career network: profile sync, feed and Venture Lab",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(profile_router)
    app.include_router(notifications_router)
    app.include_router(feed_router)
    app.include_router(ws_router)

    return app


app = create_app()
