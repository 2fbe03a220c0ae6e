"""Pydantic schemas for call logs.

Statuses mirror the client state machine. A log starts "initiated"
(POST /calls/start) or arrives already terminal from a client
(POST /calls/logs); once terminal it never changes again.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

CallKind = Literal["audio", "video"]
CallStatus = Literal[
    "initiated", "ringing", "connected", "ended", "missed", "rejected", "busy", "failed"
]

TERMINAL_STATUSES = frozenset({"ended", "missed", "rejected", "busy", "failed"})


class CallStart(BaseModel):
    """Caller asks the platform to open a call log and ring the receiver."""
    receiver_id: str = Field(..., min_length=1)
    kind: CallKind = "audio"
    room_id: Optional[str] = None
    call_id: Optional[str] = Field(
        None, description="Client-generated session id (generated if omitted)"
    )


class CallStatusUpdate(BaseModel):
    """Move a call log to a new status."""
    status: CallStatus
    duration: Optional[int] = Field(None, ge=0, description="Seconds, for 'ended'")


class CallLogCreate(BaseModel):
    """Terminal call record produced by a client call state machine."""
    id: str = Field(..., min_length=1, max_length=64)
    caller_id: str
    receiver_id: str
    kind: CallKind = "audio"
    status: CallStatus
    room_id: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=0)

    @field_validator("status")
    @classmethod
    def _must_be_terminal(cls, value: str) -> str:
        if value not in TERMINAL_STATUSES:
            raise ValueError(f"call log records must be terminal, got '{value}'")
        return value


class CallLogRead(BaseModel):
    """A call log row, as rendered by call history."""
    id: str
    room_id: Optional[str]
    caller_id: str
    receiver_id: str
    kind: CallKind
    status: CallStatus
    started_at: datetime
    ended_at: Optional[datetime]
    duration: Optional[int]

    model_config = {"from_attributes": True}
