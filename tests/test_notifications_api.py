"""Notification API tests.

Learn: Tests cover the acknowledge-read lifecycle the client core relies on:
1. Producers create notifications (stored + pushed)
2. The inbox lists them, newest first, filterable by unread/category
3. Single, batch and by-resource acknowledgement — all idempotent
4. Error cases: unknown id, someone else's notification, empty batch
"""

import uuid

import pytest

CURRENT_USER = "user-1"  # the `client` fixture identity
OTHER_USER = "user-2"


# ─── Helpers ──────────────────────────────────────────────


async def _create(client, user_id=CURRENT_USER, category="message", **metadata):
    r = await client.post(
        "/api/v1/notifications",
        json={
            "user_id": user_id,
            "title": f"{category} notification",
            "message": "Something happened",
            "category": category,
            "metadata": metadata,
        },
    )
    assert r.status_code == 201, r.text
    return r.json()


# ═══════════════════════════════════════════════════════════
# Create + list
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_notification(client):
    n = await _create(client, room_id="42")
    assert n["user_id"] == CURRENT_USER
    assert n["category"] == "message"
    assert n["type"] == "info"
    assert n["is_read"] is False
    assert n["metadata"] == {"room_id": "42"}
    uuid.UUID(n["id"])


@pytest.mark.asyncio
async def test_create_rejects_unknown_category(client):
    r = await client.post(
        "/api/v1/notifications",
        json={"user_id": CURRENT_USER, "title": "x", "message": "y", "category": "weather"},
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_list_only_returns_own_notifications(client):
    mine = await _create(client)
    await _create(client, user_id=OTHER_USER)

    r = await client.get("/api/v1/notifications")
    assert r.status_code == 200
    ids = [n["id"] for n in r.json()]
    assert ids == [mine["id"]]


@pytest.mark.asyncio
async def test_list_filters_unread_and_category(client):
    msg = await _create(client, category="message")
    task = await _create(client, category="task")
    r = await client.put(f"/api/v1/notifications/{msg['id']}/read")
    assert r.status_code == 200

    r = await client.get("/api/v1/notifications", params={"unread": "true"})
    assert [n["id"] for n in r.json()] == [task["id"]]

    r = await client.get("/api/v1/notifications", params={"category": "message"})
    assert [n["id"] for n in r.json()] == [msg["id"]]


# ═══════════════════════════════════════════════════════════
# Single acknowledge
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(client):
    n = await _create(client)

    r = await client.put(f"/api/v1/notifications/{n['id']}/read")
    assert r.status_code == 200
    assert r.json()["is_read"] is True

    r = await client.put(f"/api/v1/notifications/{n['id']}/read")
    assert r.status_code == 200
    assert r.json()["is_read"] is True


@pytest.mark.asyncio
async def test_mark_read_unknown_id(client):
    r = await client.put(f"/api/v1/notifications/{uuid.uuid4()}/read")
    assert r.status_code == 404

    r = await client.put("/api/v1/notifications/not-a-uuid/read")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_mark_read_someone_elses_notification(client):
    theirs = await _create(client, user_id=OTHER_USER)
    r = await client.put(f"/api/v1/notifications/{theirs['id']}/read")
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Batch acknowledge
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_batch_read(client):
    a = await _create(client, room_id="42")
    b = await _create(client, room_id="42")
    c = await _create(client, room_id="7")

    r = await client.put(
        "/api/v1/notifications/batch-read",
        json={"notification_ids": [a["id"], b["id"]]},
    )
    assert r.status_code == 200
    assert r.json() == {"updated": 2}

    r = await client.get("/api/v1/notifications", params={"unread": "true"})
    assert [n["id"] for n in r.json()] == [c["id"]]


@pytest.mark.asyncio
async def test_batch_read_is_idempotent(client):
    a = await _create(client)
    body = {"notification_ids": [a["id"]]}

    r = await client.put("/api/v1/notifications/batch-read", json=body)
    assert r.json() == {"updated": 1}

    r = await client.put("/api/v1/notifications/batch-read", json=body)
    assert r.status_code == 200
    assert r.json() == {"updated": 0}


@pytest.mark.asyncio
async def test_batch_read_rejects_empty_list(client):
    r = await client.put("/api/v1/notifications/batch-read", json={"notification_ids": []})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_batch_read_ignores_unknown_and_foreign_ids(client):
    mine = await _create(client)
    theirs = await _create(client, user_id=OTHER_USER)

    r = await client.put(
        "/api/v1/notifications/batch-read",
        json={"notification_ids": [mine["id"], theirs["id"], str(uuid.uuid4()), "junk"]},
    )
    assert r.status_code == 200
    assert r.json() == {"updated": 1}


# ═══════════════════════════════════════════════════════════
# Mark by resource
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_mark_by_resource(client):
    a = await _create(client, category="task", resource_id="task-9", task_id="9")
    b = await _create(client, category="task", resource_id="task-9", task_id="9")
    other = await _create(client, category="task", resource_id="task-10", task_id="10")

    r = await client.put(
        "/api/v1/notifications/mark-by-resource",
        json={"resource_id": "task-9", "category": "task"},
    )
    assert r.status_code == 200
    assert r.json() == {"updated": 2}

    r = await client.get("/api/v1/notifications", params={"unread": "true"})
    unread = {n["id"] for n in r.json()}
    assert unread == {other["id"]}
    assert a["id"] not in unread and b["id"] not in unread
