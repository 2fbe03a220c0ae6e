"""Test fixtures — in-memory database per test, app with overridden deps.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine (aiosqlite). StaticPool
   keeps the single connection alive so every session sees the same data.
2. Tables are created from the ORM metadata — no migrations to run.
3. get_db and get_current_user are overridden, so protected routes work
   without real JWT tokens and pushes go through the in-process hub.

Client-core tests need none of this: they use client.fakes and a
ManualScheduler.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from staffline.config import settings

# No Redis in tests: delivery stays in-process through the hub
settings.redis_url = ""

from staffline.auth.dependencies import CurrentIdentity, get_current_user  # noqa: E402
from staffline.db.engine import get_db  # noqa: E402
from staffline.db.models import Base  # noqa: E402
from staffline.main import app  # noqa: E402
from staffline.realtime.hub import hub  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

CURRENT_USER = "user-1"
OTHER_USER = "user-2"


@pytest_asyncio.fixture()
async def db_session():
    """Fresh in-memory database with all tables, one session per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


def _override_db(db_session):
    async def override_get_db():
        yield db_session

    return override_get_db


@pytest_asyncio.fixture()
async def client(db_session):
    """HTTP client acting as CURRENT_USER."""
    app.dependency_overrides[get_db] = _override_db(db_session)
    app.dependency_overrides[get_current_user] = lambda: CurrentIdentity(user_id=CURRENT_USER)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(db_session):
    """HTTP client WITHOUT the auth override — for real JWT flows."""
    app.dependency_overrides[get_db] = _override_db(db_session)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _clear_hub():
    hub.clear()
    yield
    hub.clear()
