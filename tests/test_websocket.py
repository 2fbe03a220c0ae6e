"""WebSocket event channel tests.

Learn: Starlette's TestClient drives the real /ws endpoint. All sockets of
one test share the client's event loop (the `with TestClient(app)` block),
so the in-process hub can deliver between them exactly as it would between
browser tabs. Every subscribe is acknowledged with "subscribed", which makes
the tests deterministic: once the ack arrives, the socket is routable.
"""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from staffline.auth.jwt import create_access_token
from staffline.db import engine as db_engine
from staffline.db.engine import get_db
from staffline.main import app
from staffline.realtime import pubsub


@pytest.fixture()
def tc(monkeypatch):
    """TestClient with lifespan running against an in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    # The lifespan creates tables on (and disposes) whatever engine this is
    monkeypatch.setattr(db_engine, "engine", engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def _subscribe(ws, user_id):
    ws.send_json({"type": "subscribe", "data": {"user_id": user_id}})
    ack = ws.receive_json()
    assert ack == {"type": "subscribed", "data": {"user_id": user_id}}


def _assert_quiet(ws):
    """Nothing queued for this socket: the next frame is the pong."""
    ws.send_json({"type": "ping", "data": {}})
    assert ws.receive_json()["type"] == "pong"


# ─── Handshake ────────────────────────────────────────────


def test_subscribe_is_acknowledged(tc):
    with tc.websocket_connect("/ws") as ws:
        _subscribe(ws, "user-1")


def test_ping_pong(tc):
    with tc.websocket_connect("/ws") as ws:
        ws.send_json({"type": "ping", "data": {}})
        assert ws.receive_json() == {"type": "pong", "data": {}}


def test_token_subject_wins_over_subscribe_payload(tc):
    token = create_access_token("user-9")
    with tc.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_json({"type": "subscribe", "data": {"user_id": "someone-else"}})
        assert ws.receive_json() == {"type": "subscribed", "data": {"user_id": "user-9"}}


def test_invalid_token_is_rejected(tc):
    with pytest.raises(WebSocketDisconnect) as exc:
        with tc.websocket_connect("/ws?token=garbage") as ws:
            ws.receive_json()
    assert exc.value.code == 4001


def test_malformed_frames_are_ignored(tc):
    with tc.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        ws.send_json(["not", "an", "object"])
        _subscribe(ws, "user-1")


# ─── Call signaling relay ─────────────────────────────────


def test_call_offer_reaches_only_the_addressed_user(tc):
    with tc.websocket_connect("/ws") as caller, \
            tc.websocket_connect("/ws") as callee, \
            tc.websocket_connect("/ws") as bystander:
        _subscribe(caller, "user-1")
        _subscribe(callee, "user-2")
        _subscribe(bystander, "user-3")

        caller.send_json({
            "type": "call_offer",
            "data": {
                "call_id": "c-1",
                "to": "user-2",
                "from_user": "spoofed",
                "kind": "video",
                "caller_name": "Alice",
                "sdp": {"type": "offer", "sdp": "v=0"},
            },
        })

        frame = callee.receive_json()
        assert frame["type"] == "call_offer"
        assert frame["data"]["call_id"] == "c-1"
        assert frame["data"]["from_user"] == "user-1"
        assert frame["data"]["kind"] == "video"
        assert frame["data"]["sdp"] == {"type": "offer", "sdp": "v=0"}

        _assert_quiet(bystander)
        _assert_quiet(caller)


def test_signal_reaches_every_tab_of_the_recipient(tc):
    with tc.websocket_connect("/ws") as caller, \
            tc.websocket_connect("/ws") as tab_a, \
            tc.websocket_connect("/ws") as tab_b:
        _subscribe(caller, "user-1")
        _subscribe(tab_a, "user-2")
        _subscribe(tab_b, "user-2")

        caller.send_json({"type": "call_end", "data": {"call_id": "c-1", "to": "user-2"}})

        assert tab_a.receive_json()["type"] == "call_end"
        assert tab_b.receive_json()["type"] == "call_end"


def test_signal_without_recipient_is_dropped(tc):
    with tc.websocket_connect("/ws") as caller, tc.websocket_connect("/ws") as other:
        _subscribe(caller, "user-1")
        _subscribe(other, "user-2")

        caller.send_json({"type": "call_answer", "data": {"call_id": "c-1"}})

        _assert_quiet(other)
        _assert_quiet(caller)


def test_signal_before_subscribe_is_dropped(tc):
    with tc.websocket_connect("/ws") as anon, tc.websocket_connect("/ws") as callee:
        _subscribe(callee, "user-2")
        anon.send_json({"type": "call_offer", "data": {"call_id": "c-1", "to": "user-2"}})
        _assert_quiet(callee)


# ─── Presence + notifications ─────────────────────────────


def test_aux_update_is_broadcast(tc):
    with tc.websocket_connect("/ws") as sender, tc.websocket_connect("/ws") as watcher:
        _subscribe(sender, "user-1")
        _subscribe(watcher, "user-2")

        sender.send_json({"type": "aux_update", "data": {"status": "break", "note": "coffee"}})

        frame = watcher.receive_json()
        assert frame["type"] == "aux_status_update"
        assert frame["data"]["user_id"] == "user-1"
        assert frame["data"]["status"] == "break"
        assert frame["data"]["note"] == "coffee"

        # Everyone sees it, including the sender's own tab
        assert sender.receive_json()["type"] == "aux_status_update"


def test_created_notification_is_pushed(tc):
    with tc.websocket_connect("/ws") as ws:
        _subscribe(ws, "user-1")

        token = create_access_token("user-9")
        r = tc.post(
            "/api/v1/notifications",
            headers={"Authorization": f"Bearer {token}"},
            json={
                "user_id": "user-1",
                "title": "New task assigned",
                "message": "Fix the payroll export",
                "category": "task",
                "metadata": {"task_id": "7"},
            },
        )
        assert r.status_code == 201

        frame = ws.receive_json()
        assert frame["type"] == "new_notification"
        assert frame["data"]["id"] == r.json()["id"]
        assert frame["data"]["category"] == "task"
        assert frame["data"]["metadata"] == {"task_id": "7"}


class _SlowPubSub:
    """Redis pubsub whose subscribe takes a moment to land."""

    def __init__(self, subscribed):
        self.subscribed = subscribed

    async def subscribe(self, *channels):
        await asyncio.sleep(0.05)
        self.subscribed.extend(channels)

    async def listen(self):
        await asyncio.Event().wait()
        yield {}

    async def unsubscribe(self):
        pass

    async def aclose(self):
        pass


class _FakeRedis:
    def __init__(self):
        self.subscribed = []

    def pubsub(self):
        return _SlowPubSub(self.subscribed)

    async def aclose(self):
        pass


def test_subscribe_is_acknowledged_after_the_redis_subscription(tc, monkeypatch):
    redis = _FakeRedis()
    monkeypatch.setattr(pubsub, "_redis", redis)

    with tc.websocket_connect("/ws") as ws:
        _subscribe(ws, "user-1")
        assert redis.subscribed == [pubsub.user_channel("user-1"), pubsub.BROADCAST_CHANNEL]
