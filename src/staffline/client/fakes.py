"""In-memory capabilities for tests and headless runs.

Learn: Everything the core needs from the outside world is a small
protocol: a transport, a notification channel, a tone player, a read
acknowledger, a call-log sink. These fakes record what they were asked to
do so tests can assert on it, and can be told to fail.
"""

import asyncio
import json
from typing import Any, Optional, Union

from pydantic import BaseModel

from staffline.client.presentation import DesktopNotification
from staffline.client.transport import TransportClosed
from staffline.schemas.call import CallLogCreate
from staffline.schemas.events import dump_event

_CLOSED = object()


async def settle(rounds: int = 20) -> None:
    """Let pending tasks on the loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ─── Transport ───────────────────────────────────────────


class FakeConnection:
    def __init__(self, url: str):
        self.url = url
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, frame: str) -> None:
        if self.closed:
            raise TransportClosed("connection closed")
        self.sent.append(frame)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise TransportClosed("connection closed")
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)

    def push(self, frame: Union[str, dict, BaseModel]) -> None:
        """Deliver a frame from the server side."""
        if isinstance(frame, BaseModel):
            frame = dump_event(frame)
        elif isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the server going away."""
        self.closed = True
        self._inbox.put_nowait(_CLOSED)

    @property
    def sent_frames(self) -> list[dict]:
        return [json.loads(f) for f in self.sent]


class FakeTransport:
    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.attempts = 0
        self.connections: list[FakeConnection] = []

    async def open(self, url: str) -> FakeConnection:
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionRefusedError("connection refused")
        conn = FakeConnection(url)
        self.connections.append(conn)
        return conn

    @property
    def open_connections(self) -> list[FakeConnection]:
        return [c for c in self.connections if not c.closed]

    @property
    def latest(self) -> Optional[FakeConnection]:
        return self.connections[-1] if self.connections else None


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


# ─── Presentation ────────────────────────────────────────


class RecordingChannel:
    def __init__(self, permission: str = "granted", supported: bool = True, fail: bool = False):
        self._permission = permission
        self.supported = supported
        self.fail = fail
        self.grant_on_request = "granted"
        self.shown: list[DesktopNotification] = []
        self.permission_requests = 0

    def is_supported(self) -> bool:
        return self.supported

    def permission(self) -> str:
        return self._permission

    async def request_permission(self) -> str:
        self.permission_requests += 1
        self._permission = self.grant_on_request
        return self._permission

    def show(self, notification: DesktopNotification) -> None:
        if self.fail:
            raise RuntimeError("notification channel unavailable")
        self.shown.append(notification)


class RecordingTonePlayer:
    def __init__(self):
        self.played: list[str] = []
        self.stops = 0

    def play_tone(self, category: str) -> None:
        self.played.append(category)

    def stop_tone(self) -> None:
        self.stops += 1


# ─── REST collaborators ──────────────────────────────────


class FakeAcknowledger:
    """ReadAcknowledger that records calls; ids in fail_ids fail on their own."""

    def __init__(self, batch_fails: bool = False, fail_ids: Optional[set[str]] = None):
        self.batch_fails = batch_fails
        self.fail_ids = set(fail_ids or ())
        self.single_calls: list[str] = []
        self.batch_calls: list[list[str]] = []
        self.read: set[str] = set()

    async def mark_read(self, notification_id: str) -> Any:
        self.single_calls.append(notification_id)
        await asyncio.sleep(0)
        if notification_id in self.fail_ids:
            raise RuntimeError(f"failed to mark {notification_id}")
        self.read.add(notification_id)
        return {"id": notification_id, "is_read": True}

    async def mark_read_batch(self, notification_ids: list[str]) -> Any:
        self.batch_calls.append(list(notification_ids))
        await asyncio.sleep(0)
        if self.batch_fails:
            raise RuntimeError("batch endpoint unavailable")
        self.read.update(notification_ids)
        return len(notification_ids)


class RecordingCallLogSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: list[CallLogCreate] = []

    async def record_call(self, log: CallLogCreate) -> Any:
        self.records.append(log)
        if self.fail:
            raise RuntimeError("call log store unavailable")
        return log
