"""Health check endpoint.

Reports database and Redis reachability plus how many users and sockets
this instance currently holds in its connection registry.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from wayzer import __version__
from wayzer.config import settings
from wayzer.db.engine import engine

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check the database
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis (optional; an empty WAYZER_REDIS_URL disables it)
    if settings.redis_url:
        try:
            from redis.asyncio import from_url

            r = from_url(settings.redis_url)
            await r.ping()
            await r.aclose()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"
    else:
        checks["redis"] = "disabled"

    status = "healthy" if all(
        v in ("ok", "disabled") for k, v in checks.items() if k != "version"
    ) else "degraded"

    registry = request.app.state.registry
    return {
        "status": status,
        **checks,
        "realtime": {
            "online_users": len(registry),
            "connections": registry.connection_count,
        },
    }
