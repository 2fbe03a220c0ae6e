"""Call log API tests.

Learn: Two write paths, one rule — a terminal log never changes:
1. start → status updates (REST flow), 409 on a disallowed move
2. terminal record from a client state machine, first record wins
3. History queries by participant and by chat room
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from staffline.db.models import CallLog, Notification

CURRENT_USER = "user-1"  # the `client` fixture identity
OTHER_USER = "user-2"


def _log(status="ended", caller=CURRENT_USER, receiver=OTHER_USER, **extra):
    started = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    body = {
        "id": extra.pop("id", uuid.uuid4().hex),
        "caller_id": caller,
        "receiver_id": receiver,
        "kind": "audio",
        "status": status,
        "started_at": started.isoformat(),
        "ended_at": (started + timedelta(seconds=95)).isoformat(),
        "duration": 90 if status == "ended" else None,
    }
    body.update(extra)
    return body


# ═══════════════════════════════════════════════════════════
# Start + status
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_start_call_creates_log_and_notifies_receiver(client, db_session):
    r = await client.post(
        "/api/v1/calls/start",
        json={"receiver_id": OTHER_USER, "kind": "video", "room_id": "42"},
    )
    assert r.status_code == 201, r.text
    call = r.json()
    assert call["status"] == "initiated"
    assert call["caller_id"] == CURRENT_USER
    assert call["kind"] == "video"
    assert call["ended_at"] is None

    # The receiver got a call notification pointing at this call
    rows = (await db_session.execute(select(Notification))).scalars().all()
    assert len(rows) == 1
    assert rows[0].user_id == OTHER_USER
    assert rows[0].category == "call"
    assert rows[0].meta["call_id"] == call["id"]
    assert rows[0].title == "Incoming video call"


@pytest.mark.asyncio
async def test_start_call_uses_client_session_id(client):
    r = await client.post(
        "/api/v1/calls/start", json={"receiver_id": OTHER_USER, "call_id": "session-abc"}
    )
    assert r.status_code == 201
    assert r.json()["id"] == "session-abc"


@pytest.mark.asyncio
async def test_cannot_call_yourself(client):
    r = await client.post("/api/v1/calls/start", json={"receiver_id": CURRENT_USER})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_status_transitions_until_terminal(client):
    r = await client.post("/api/v1/calls/start", json={"receiver_id": OTHER_USER})
    call_id = r.json()["id"]

    r = await client.patch(f"/api/v1/calls/{call_id}/status", json={"status": "connected"})
    assert r.status_code == 200
    assert r.json()["status"] == "connected"

    r = await client.patch(
        f"/api/v1/calls/{call_id}/status", json={"status": "ended", "duration": 42}
    )
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ended"
    assert data["duration"] == 42
    assert data["ended_at"] is not None


@pytest.mark.asyncio
async def test_terminal_log_is_immutable(client):
    r = await client.post("/api/v1/calls/start", json={"receiver_id": OTHER_USER})
    call_id = r.json()["id"]

    r = await client.patch(f"/api/v1/calls/{call_id}/status", json={"status": "missed"})
    assert r.status_code == 200

    r = await client.patch(f"/api/v1/calls/{call_id}/status", json={"status": "connected"})
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_status_update_cannot_go_backwards(client):
    r = await client.post("/api/v1/calls/start", json={"receiver_id": OTHER_USER})
    call_id = r.json()["id"]

    r = await client.patch(f"/api/v1/calls/{call_id}/status", json={"status": "ringing"})
    assert r.status_code == 200
    r = await client.patch(f"/api/v1/calls/{call_id}/status", json={"status": "connected"})
    assert r.status_code == 200

    r = await client.patch(f"/api/v1/calls/{call_id}/status", json={"status": "ringing"})
    assert r.status_code == 409
    assert "connected" in r.json()["detail"]

    r = await client.get("/api/v1/calls/history")
    assert r.json()[0]["status"] == "connected"


@pytest.mark.asyncio
async def test_status_update_unknown_call(client):
    r = await client.patch("/api/v1/calls/nope/status", json={"status": "ended"})
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Terminal records
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_record_terminal_log(client):
    body = _log()
    r = await client.post("/api/v1/calls/logs", json=body)
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["id"] == body["id"]
    assert data["status"] == "ended"
    assert data["duration"] == 90


@pytest.mark.asyncio
async def test_second_record_returns_the_first(client):
    body = _log(status="ended")
    r = await client.post("/api/v1/calls/logs", json=body)
    assert r.status_code == 201

    # The peer reports the same call differently; the first record stands
    r = await client.post("/api/v1/calls/logs", json={**body, "status": "failed", "duration": None})
    assert r.status_code == 200
    assert r.json()["status"] == "ended"
    assert r.json()["duration"] == 90


@pytest.mark.asyncio
async def test_record_finalises_started_call(client):
    r = await client.post(
        "/api/v1/calls/start", json={"receiver_id": OTHER_USER, "call_id": "live-1"}
    )
    assert r.json()["status"] == "initiated"

    r = await client.post("/api/v1/calls/logs", json=_log(id="live-1", status="rejected"))
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"


@pytest.mark.asyncio
async def test_record_rejects_non_terminal_status(client):
    r = await client.post("/api/v1/calls/logs", json=_log(status="ringing"))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_record_requires_participation(client):
    r = await client.post("/api/v1/calls/logs", json=_log(caller="user-3", receiver="user-4"))
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# History
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_history_includes_made_and_received_calls(client):
    made = _log(caller=CURRENT_USER, receiver=OTHER_USER)
    received = _log(caller=OTHER_USER, receiver=CURRENT_USER, status="missed")
    await client.post("/api/v1/calls/logs", json=made)
    await client.post("/api/v1/calls/logs", json=received)

    r = await client.get("/api/v1/calls/history")
    assert r.status_code == 200
    assert {c["id"] for c in r.json()} == {made["id"], received["id"]}


@pytest.mark.asyncio
async def test_room_history(client):
    in_room = _log(room_id="42")
    elsewhere = _log(room_id="7")
    await client.post("/api/v1/calls/logs", json=in_room)
    await client.post("/api/v1/calls/logs", json=elsewhere)

    r = await client.get("/api/v1/calls/room/42")
    assert r.status_code == 200
    assert [c["id"] for c in r.json()] == [in_room["id"]]


@pytest.mark.asyncio
async def test_room_history_lists_only_calls_the_user_took_part_in(client, db_session):
    db_session.add(
        CallLog(
            id="others-1",
            room_id="42",
            caller_id="user-3",
            receiver_id="user-4",
            kind="audio",
            status="ended",
            started_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
            duration=30,
        )
    )
    await db_session.commit()

    r = await client.get("/api/v1/calls/room/42")
    assert r.status_code == 200
    assert r.json() == []
