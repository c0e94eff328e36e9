"""FastAPI application factory.

create_app() returns a configured FastAPI instance: middleware, CORS,
the REST routers and the notification WebSocket.

The realtime objects (registry, relay, handshake) are built here and
hung on app.state rather than in the lifespan, so they exist even when
the app is driven without a lifespan (httpx ASGITransport in tests).
The lifespan only wires the optional pieces that need I/O: Redis and
the cross-instance fan-out subscriber.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wayzer import __version__
from wayzer.api import api_router
from wayzer.config import settings
from wayzer.db.engine import async_session_factory
from wayzer.realtime.handshake import AuthHandshake, DatabaseTokenVerifier
from wayzer.realtime.registry import ConnectionRegistry
from wayzer.realtime.relay import EventRelay

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "wayzer.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        fanout=settings.realtime_fanout,
    )

    from wayzer.realtime.pubsub import RedisFanout, close_redis, init_redis

    redis = None
    if settings.redis_url:
        try:
            redis = await init_redis()
            logger.info("wayzer.redis_connected", url=settings.redis_url)
        except Exception as e:
            # Redis is optional: without it there is no rate limiting
            # and notifications stay on this instance.
            logger.warning("wayzer.redis_unavailable", error=str(e))

    relay: EventRelay = app.state.relay
    fanout_task = None
    if settings.realtime_fanout == "redis":
        if redis is None:
            logger.warning("wayzer.fanout_disabled", reason="redis unavailable")
        else:
            relay.fanout = RedisFanout(redis)
            fanout_task = asyncio.create_task(relay.fanout.run(relay.receive_remote))
            logger.info("wayzer.fanout_started")

    yield

    # Shutdown
    logger.info("wayzer.shutdown", connections=app.state.registry.connection_count)

    if fanout_task is not None:
        fanout_task.cancel()
        try:
            await fanout_task
        except asyncio.CancelledError:
            pass
        relay.fanout = None

    await close_redis()

    from wayzer.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Wayzer Chat",
        description="Trip chat REST API with real-time WebSocket notifications",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Realtime ─────────────────────────────────────────────
    registry = ConnectionRegistry()
    app.state.registry = registry
    app.state.relay = EventRelay(registry)
    app.state.handshake = AuthHandshake(
        registry, DatabaseTokenVerifier(async_session_factory)
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → handler

    from wayzer.middleware.rate_limit import RateLimitMiddleware
    from wayzer.middleware.request_id import RequestIdMiddleware
    from wayzer.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from wayzer.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: wayzer.main:app)
app = create_app()
