"""Auto-mark-read — opening a view acknowledges what it shows.

Learn: When the user opens a screen, unread notifications about what that
screen displays are marked read without them clicking anything:

  /chat?roomId=R        unread message notifications for room R
  /tasks                every unread task notification
  /tasks?taskId=T       only the ones about task T
  /call-history         every unread call notification
  /hr                   every unread leave_request notification

One id → one single acknowledge call. Several → one batch call. If the
batch call fails, every id is acknowledged on its own and all of them are
awaited (settle-all): one failing id never stops the others. Ids this
coordinator already acknowledged are not sent again; failed ids are
retried on the next reconcile.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

import structlog

from staffline.client.location import Location
from staffline.schemas.notification import NotificationRead

logger = structlog.get_logger()


class ReadAcknowledger(Protocol):
    async def mark_read(self, notification_id: str) -> Any: ...

    async def mark_read_batch(self, notification_ids: list[str]) -> Any: ...


@dataclass
class AckResult:
    acknowledged: list[str] = field(default_factory=list)
    failed: dict[str, Exception] = field(default_factory=dict)
    used_batch: bool = False


def select_ids(location: Location, notifications: Iterable[NotificationRead]) -> list[str]:
    """Unread notification ids the current view accounts for, in order."""
    view = location.view
    if view == "chat":
        room = location.room_id
        if room is None:
            return []
        wanted = lambda n: n.category == "message" and n.room_id == room
    elif view == "tasks":
        task = location.task_id
        wanted = lambda n: n.category == "task" and (task is None or n.task_id == task)
    elif view == "call-history":
        wanted = lambda n: n.category == "call"
    elif view == "hr":
        wanted = lambda n: n.category == "leave_request"
    else:
        return []

    ids: list[str] = []
    for n in notifications:
        if not n.is_read and wanted(n) and n.id not in ids:
            ids.append(n.id)
    return ids


class AutoMarkReadCoordinator:
    def __init__(self, acknowledger: ReadAcknowledger):
        self.acknowledger = acknowledger
        self._acknowledged: set[str] = set()
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def is_acknowledged(self, notification_id: str) -> bool:
        return notification_id in self._acknowledged

    async def reconcile(
        self, location: Location, notifications: Iterable[NotificationRead]
    ) -> AckResult:
        """Acknowledge what the current view shows. Returns what happened."""
        ids = [
            i for i in select_ids(location, notifications)
            if i not in self._acknowledged and i not in self._in_flight
        ]
        if not ids:
            return AckResult()

        self._in_flight.update(ids)
        try:
            result = await self._acknowledge(ids)
        finally:
            self._in_flight.difference_update(ids)

        self._acknowledged.update(result.acknowledged)
        logger.info(
            "auto_read.reconciled",
            location=str(location),
            acknowledged=len(result.acknowledged),
            failed=len(result.failed),
        )
        return result

    def schedule(
        self, location: Location, notifications: Iterable[NotificationRead]
    ) -> Optional[asyncio.Task]:
        """Fire-and-forget reconcile. flush() waits for it."""
        snapshot = list(notifications)
        if not select_ids(location, snapshot):
            return None
        task = asyncio.create_task(self.reconcile(location, snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def flush(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _acknowledge(self, ids: list[str]) -> AckResult:
        if len(ids) == 1:
            try:
                await self.acknowledger.mark_read(ids[0])
            except Exception as e:
                logger.warning("auto_read.mark_failed", notification_id=ids[0], error=str(e))
                return AckResult(failed={ids[0]: e})
            return AckResult(acknowledged=list(ids))

        try:
            await self.acknowledger.mark_read_batch(list(ids))
            return AckResult(acknowledged=list(ids), used_batch=True)
        except Exception as e:
            logger.warning("auto_read.batch_failed", count=len(ids), error=str(e))

        outcomes = await asyncio.gather(
            *(self.acknowledger.mark_read(i) for i in ids), return_exceptions=True
        )
        result = AckResult(used_batch=True)
        for notification_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "auto_read.mark_failed", notification_id=notification_id, error=str(outcome)
                )
                result.failed[notification_id] = outcome
            else:
                result.acknowledged.append(notification_id)
        return result
