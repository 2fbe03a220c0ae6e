"""SQLAlchemy ORM models for the real-time layer.

Learn: Two tables back everything the client core reads back over REST:
notifications (read/unread state, acknowledged by the auto-mark-read
coordinator) and call_logs (one row per call attempt, finalised by the
client call state machine).

Users, chat rooms and tasks live in the wider HR workspace; here they are
plain string references, not foreign keys.

Types are portable (JSON with a JSONB variant, generic Uuid) so the same
models run on PostgreSQL in production and SQLite in tests.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Notification(Base):
    """A user-directed notification with one-way unread → read state."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # "message", "task", "call", "leave_request", "system"
    category: Mapped[str] = mapped_column(String(20), nullable=False, default="system")
    # severity: "info", "warning", "error", "success"
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="info")
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )


class CallLog(Base):
    """One audio/video call attempt.

    The id is the client-generated call session id, so signaling frames and
    the log row share one key.
    """

    __tablename__ = "call_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    room_id: Mapped[Optional[str]] = mapped_column(String(64))
    caller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # "audio" | "video"
    kind: Mapped[str] = mapped_column(String(10), nullable=False, default="audio")
    # "initiated" → ... → ended | missed | rejected | busy | failed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="initiated")
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_call_logs_caller", "caller_id"),
        Index("ix_call_logs_receiver", "receiver_id"),
        Index("ix_call_logs_room", "room_id"),
    )
