"""StafflineClient tests — the REST client against the real app (ASGI transport).

Learn: The same client is the auto-read acknowledger and the call-log sink
in production, so these tests drive those collaborators end to end.
"""

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from staffline.client.api import StafflineClient
from staffline.client.auto_read import AutoMarkReadCoordinator
from staffline.client.calls import CallSession
from staffline.client.clock import ManualScheduler
from staffline.client.location import Location
from staffline.main import app
from staffline.schemas.notification import NotificationCreate

CURRENT_USER = "user-1"  # the `client` fixture identity
OTHER_USER = "user-2"


@pytest_asyncio.fixture()
async def api(client):
    """StafflineClient sharing the `client` fixture's overrides."""
    http = AsyncClient(transport=ASGITransport(app=app), base_url="http://test/api/v1")
    async with StafflineClient(client=http) as staffline:
        yield staffline


async def _task_notification(api, task_id):
    return await api.create_notification(
        NotificationCreate(
            user_id=CURRENT_USER,
            title=f"Task {task_id} assigned",
            message="Please review",
            category="task",
            metadata={"task_id": task_id},
        )
    )


@pytest.mark.asyncio
async def test_inbox_round_trip(api):
    created = await _task_notification(api, "3")
    assert created.category == "task"
    assert created.task_id == "3"

    inbox = await api.list_notifications(unread=True)
    assert [n.id for n in inbox] == [created.id]

    read = await api.mark_read(created.id)
    assert read.is_read is True
    assert await api.list_notifications(unread=True) == []


@pytest.mark.asyncio
async def test_auto_read_through_the_api(api):
    await _task_notification(api, "3")
    await _task_notification(api, "4")
    inbox = await api.list_notifications(unread=True)

    result = await AutoMarkReadCoordinator(api).reconcile(Location.parse("/tasks"), inbox)

    assert result.used_batch is True
    assert len(result.acknowledged) == 2
    assert await api.list_notifications(unread=True) == []


@pytest.mark.asyncio
async def test_mark_by_resource(api):
    await api.create_notification(
        NotificationCreate(
            user_id=CURRENT_USER,
            title="Leave approved",
            message="Enjoy",
            category="leave_request",
            metadata={"resource_id": "leave-9"},
        )
    )
    assert await api.mark_by_resource("leave-9", "leave_request") == 1
    assert await api.mark_by_resource("leave-9", "leave_request") == 0


@pytest.mark.asyncio
async def test_session_log_is_recorded_once(api):
    scheduler = ManualScheduler()
    session = CallSession("call-77", CURRENT_USER, OTHER_USER, scheduler, room_id="42")
    session.initiate()
    session.offer_delivered()
    scheduler.advance(2)
    session.answer()
    scheduler.advance(61)
    session.hangup()

    logged = await api.record_call(session.to_log())
    assert logged.status == "ended"
    assert logged.duration == 61

    again = await api.record_call(session.to_log())
    assert again.id == logged.id

    assert [c.id for c in await api.call_history()] == ["call-77"]
    assert [c.id for c in await api.room_calls("42")] == ["call-77"]


@pytest.mark.asyncio
async def test_errors_raise_http_status_error(api):
    with pytest.raises(httpx.HTTPStatusError) as exc:
        await api.update_call_status("missing", "ended")
    assert exc.value.response.status_code == 404

