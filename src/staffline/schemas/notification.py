"""Pydantic schemas for notifications.

Learn: One read model serves both sides of the wire. The API returns it,
the /ws channel pushes it inside new_notification frames, and the client
core parses it back into the same class — so the category vocabulary and
metadata keys cannot drift between server and client.

Metadata keys the real-time layer understands:
- room_id      chat room the notification is about
- message_id   specific chat message (deep link)
- task_id      task the notification is about
- resource_id  generic resource key used by mark-by-resource
- call_id      call log the notification is about
"""

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

NotificationCategory = Literal["message", "task", "call", "leave_request", "system"]
NotificationSeverity = Literal["info", "warning", "error", "success"]

CATEGORIES: tuple[str, ...] = ("message", "task", "call", "leave_request", "system")


# ─── Create (producer → platform) ────────────────────────


class NotificationCreate(BaseModel):
    """A business event asks for a user to be notified."""
    user_id: str = Field(..., min_length=1, description="Recipient user id")
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., description="Notification body")
    category: NotificationCategory = "system"
    type: NotificationSeverity = "info"
    metadata: dict[str, Any] = Field(default_factory=dict)


# ─── Read (platform → client) ────────────────────────────


class NotificationRead(BaseModel):
    """Full notification as stored and as pushed over the event bus."""
    id: str
    user_id: str
    title: str
    message: str
    category: NotificationCategory
    type: NotificationSeverity = "info"
    is_read: bool = False
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata", "meta"),
    )
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    def _meta_str(self, key: str) -> Optional[str]:
        value = self.metadata.get(key)
        if value is None or value == "":
            return None
        return str(value)

    @property
    def room_id(self) -> Optional[str]:
        return self._meta_str("room_id")

    @property
    def task_id(self) -> Optional[str]:
        return self._meta_str("task_id")

    @property
    def message_id(self) -> Optional[str]:
        return self._meta_str("message_id")


# ─── Acknowledge (client → platform) ─────────────────────


class BatchReadRequest(BaseModel):
    """Mark several notifications read in one call."""
    notification_ids: list[str] = Field(..., min_length=1)


class MarkByResourceRequest(BaseModel):
    """Mark every notification about one resource read."""
    resource_id: str = Field(..., min_length=1)
    category: NotificationCategory


class ReadResult(BaseModel):
    """How many notifications changed from unread to read."""
    updated: int
