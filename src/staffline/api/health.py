"""Health check endpoint.

Learn: Verifies the server is running and reports whether its
dependencies (Postgres, Redis) are reachable, plus live socket count.
"""

from fastapi import APIRouter
from sqlalchemy import text

from staffline import __version__
from staffline.config import settings
from staffline.db.engine import engine
from staffline.realtime.hub import hub

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

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

    return {"status": status, "connections": hub.connection_count(), **checks}
