"""Health endpoint tests."""

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from staffline.api import health


@pytest.fixture()
def sqlite_engine(monkeypatch):
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    monkeypatch.setattr(health, "engine", engine)
    return engine


@pytest.mark.asyncio
async def test_health_returns_ok(client, sqlite_engine):
    """Health endpoint should return server status and version."""
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert "version" in data
    assert data["postgres"] == "ok"
    assert data["redis"] == "disabled"
    assert data["status"] == "healthy"
    assert data["connections"] == 0
    await sqlite_engine.dispose()
