"""Async engine and per-request sessions for the notification store.

Learn: Postgres (asyncpg) in production. A sqlite+aiosqlite URL also works
for single-process development; SQLite has no server-side pool, so the
pool settings only apply to Postgres.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from staffline.config import settings


def build_engine(url: str) -> AsyncEngine:
    kwargs: dict = {"echo": settings.debug}
    if make_url(url).get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **kwargs)


engine = build_engine(settings.database_url)

session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncSession:
    """FastAPI dependency: one session per request, closed afterwards."""
    async with session_factory() as session:
        yield session
