"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (database, Redis).
CORS, REST routers and the /ws event channel are all registered here.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from staffline import __version__
from staffline.api import api_router
from staffline.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Neither Redis nor the database is required to boot: without
    Redis, delivery stays in-process; without the database, the REST
    endpoints fail but live relaying keeps working.
    """
    logger.info(
        "staffline.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from staffline.db.engine import engine
    from staffline.db.models import Base

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("staffline.database_ready")
    except Exception as e:
        logger.warning("staffline.database_unavailable", error=str(e))

    from staffline.realtime.pubsub import close_redis, init_redis

    if settings.redis_url:
        try:
            await init_redis()
            logger.info("staffline.redis_connected", url=settings.redis_url)
        except Exception as e:
            # Redis is optional; the in-process hub takes over
            logger.warning("staffline.redis_unavailable", error=str(e))
    else:
        logger.info("staffline.redis_disabled")

    yield

    logger.info("staffline.shutdown")

    await close_redis()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Staffline",
        description="Real-time notifications, presence and call signaling",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (per-user event channel)
    from staffline.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: staffline.main:app)
app = create_app()
