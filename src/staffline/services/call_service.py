"""Call log service — the durable side of the call state machine.

Learn: The client state machine decides *when* a call is over; this
service makes the outcome durable. Two write paths:

1. start_call + update_status — the REST flow: open an "initiated" log,
   ring the receiver with a call notification, then move the status along
   (validated against VALID_TRANSITIONS, so a call never goes backwards).
2. record — a client posts the whole terminal record in one go.

Either way a terminal log is frozen. record() is idempotent: both peers
may report the same call, and the first terminal record wins.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from staffline.db.models import CallLog
from staffline.schemas.call import TERMINAL_STATUSES, CallLogCreate, CallStart
from staffline.schemas.notification import NotificationCreate
from staffline.services.notification_service import NotificationService

logger = structlog.get_logger()


VALID_TRANSITIONS: dict[str, set[str]] = {
    "initiated": {"ringing", "connected", "ended", "missed", "rejected", "busy", "failed"},
    "ringing": {"connected", "ended", "missed", "rejected", "busy", "failed"},
    "connected": {"ended", "failed"},
    # terminal statuses have no way out
    **{status: set() for status in TERMINAL_STATUSES},
}


class CallLogNotFoundError(Exception):
    """Raised when a call log is not found."""


class CallLogImmutableError(Exception):
    """Raised when trying to change a call log that already ended."""


class InvalidTransitionError(Exception):
    """Raised when a status transition is not allowed."""


class CallService:
    """Call log lifecycle."""

    def __init__(self, db: AsyncSession, notifications: NotificationService):
        self.db = db
        self.notifications = notifications

    # ─── Start (REST flow) ────────────────────────────────

    async def start_call(
        self, caller_id: str, body: CallStart, caller_name: Optional[str] = None
    ) -> CallLog:
        """Open an initiated call log and notify the receiver."""
        call = CallLog(
            id=body.call_id or uuid.uuid4().hex,
            room_id=body.room_id,
            caller_id=caller_id,
            receiver_id=body.receiver_id,
            kind=body.kind,
            status="initiated",
            started_at=datetime.now(timezone.utc),
        )
        self.db.add(call)
        await self.db.commit()
        await self.db.refresh(call)

        label = "Incoming video call" if body.kind == "video" else "Incoming audio call"
        await self.notifications.create(
            NotificationCreate(
                user_id=body.receiver_id,
                title=label,
                message=f"{caller_name or caller_id} is calling you",
                category="call",
                metadata={
                    "resource_id": call.id,
                    "call_id": call.id,
                    "call_kind": body.kind,
                    "room_id": body.room_id,
                    "user_id": caller_id,
                },
            )
        )
        logger.info("call.started", call_id=call.id, caller=caller_id, receiver=body.receiver_id)
        return call

    # ─── Status transitions ───────────────────────────────

    async def update_status(
        self,
        call_id: str,
        user_id: str,
        status: str,
        duration: Optional[int] = None,
    ) -> CallLog:
        """Move a call log to a new status."""
        call = await self._get_participant_call(call_id, user_id)

        if call.status in TERMINAL_STATUSES:
            raise CallLogImmutableError(f"Call {call_id} is already {call.status}")

        allowed = VALID_TRANSITIONS.get(call.status, set())
        if status not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition from '{call.status}' to '{status}'. "
                f"Allowed: {sorted(allowed)}"
            )

        call.status = status
        if status in TERMINAL_STATUSES:
            call.ended_at = datetime.now(timezone.utc)
            if status == "ended" and duration is not None:
                call.duration = duration

        await self.db.commit()
        await self.db.refresh(call)
        logger.info("call.status_changed", call_id=call_id, status=status)
        return call

    # ─── Terminal record (client state machine) ───────────

    async def record(self, user_id: str, body: CallLogCreate) -> tuple[CallLog, bool]:
        """Store a terminal call record.

        Returns (log, created). An existing non-terminal log is finalised;
        an existing terminal log is returned untouched.
        """
        if user_id not in (body.caller_id, body.receiver_id):
            raise CallLogNotFoundError(f"Call {body.id} not found")

        call = await self.db.get(CallLog, body.id)
        if call is not None:
            if call.caller_id != user_id and call.receiver_id != user_id:
                raise CallLogNotFoundError(f"Call {body.id} not found")
            if call.status in TERMINAL_STATUSES:
                logger.info("call.record_duplicate", call_id=body.id, kept=call.status)
                return call, False
            call.status = body.status
            call.ended_at = body.ended_at or datetime.now(timezone.utc)
            call.duration = body.duration
            await self.db.commit()
            await self.db.refresh(call)
            return call, False

        call = CallLog(
            id=body.id,
            room_id=body.room_id,
            caller_id=body.caller_id,
            receiver_id=body.receiver_id,
            kind=body.kind,
            status=body.status,
            started_at=body.started_at,
            ended_at=body.ended_at,
            duration=body.duration,
        )
        self.db.add(call)
        await self.db.commit()
        await self.db.refresh(call)
        logger.info("call.recorded", call_id=call.id, status=call.status)
        return call, True

    # ─── Queries ──────────────────────────────────────────

    async def history(self, user_id: str, limit: int = 100) -> list[CallLog]:
        """Calls the user made or received, newest first."""
        result = await self.db.execute(
            select(CallLog)
            .where(or_(CallLog.caller_id == user_id, CallLog.receiver_id == user_id))
            .order_by(CallLog.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def room_history(self, room_id: str, user_id: str, limit: int = 100) -> list[CallLog]:
        """Calls from one chat room that the user took part in, newest first."""
        result = await self.db.execute(
            select(CallLog)
            .where(
                CallLog.room_id == room_id,
                or_(CallLog.caller_id == user_id, CallLog.receiver_id == user_id),
            )
            .order_by(CallLog.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get_participant_call(self, call_id: str, user_id: str) -> CallLog:
        call = await self.db.get(CallLog, call_id)
        if call is None or user_id not in (call.caller_id, call.receiver_id):
            raise CallLogNotFoundError(f"Call {call_id} not found")
        return call
