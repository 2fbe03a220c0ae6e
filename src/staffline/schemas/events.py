"""Typed event envelopes for the /ws channel.

Learn: Every frame is {"type": ..., "data": {...}}. The type decides the
shape of data, so the envelope is a pydantic discriminated union — parsing
a frame either yields exactly one concrete event class or fails loudly.
Subscribers match on the class (or on .type) instead of poking at dicts.

Call-signaling payloads share a common header: call_id, the recipient
("to") and the sender ("from_user"). The server stamps from_user with the
sender's subscribed identity when it relays, so clients can't spoof it.
"""

import json
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from staffline.events import types as ev
from staffline.schemas.call import CallKind
from staffline.schemas.notification import NotificationRead


class EventParseError(ValueError):
    """Raised when a frame is not a valid event envelope."""


# ─── Payloads ────────────────────────────────────────────


class ChatMessageData(BaseModel):
    room_id: str
    message_id: str
    sender_id: str
    sender_name: str = ""
    content: str = ""


class MessageDeletedData(BaseModel):
    message_id: str
    room_id: Optional[str] = None


class ReactionRemovedData(BaseModel):
    message_id: str
    user_id: str
    emoji: str


class StatusUpdateData(BaseModel):
    """Presence change (AUX status or employee status)."""
    user_id: str
    status: str
    note: Optional[str] = None
    changed_at: Optional[datetime] = None


class MeetingData(BaseModel):
    meeting_id: str
    title: str
    start_time: Optional[datetime] = None
    participant_ids: list[str] = Field(default_factory=list)


class CallSignalData(BaseModel):
    call_id: str
    to: str
    from_user: Optional[str] = None
    room_id: Optional[str] = None


class CallOfferData(CallSignalData):
    kind: CallKind = "audio"
    caller_name: str = ""
    sdp: Optional[dict[str, Any]] = None


class CallAnswerData(CallSignalData):
    sdp: Optional[dict[str, Any]] = None


class IceCandidateData(CallSignalData):
    candidate: dict[str, Any]


class CallEndData(CallSignalData):
    reason: Optional[str] = None


class CallDeclineData(CallSignalData):
    reason: Optional[str] = Field(None, description="'declined', 'busy' or 'timeout'")


# ─── Envelopes ───────────────────────────────────────────


class NewNotificationEvent(BaseModel):
    type: Literal["new_notification"] = ev.NEW_NOTIFICATION
    data: NotificationRead


class NewMessageEvent(BaseModel):
    type: Literal["new_message"] = ev.NEW_MESSAGE
    data: ChatMessageData


class MessageDeletedEvent(BaseModel):
    type: Literal["message_deleted"] = ev.MESSAGE_DELETED
    data: MessageDeletedData


class ReactionRemovedEvent(BaseModel):
    type: Literal["reaction_removed"] = ev.REACTION_REMOVED
    data: ReactionRemovedData


class AuxStatusUpdateEvent(BaseModel):
    type: Literal["aux_status_update"] = ev.AUX_STATUS_UPDATE
    data: StatusUpdateData


class EmployeeStatusUpdateEvent(BaseModel):
    type: Literal["employee_status_update"] = ev.EMPLOYEE_STATUS_UPDATE
    data: StatusUpdateData


class NewMeetingEvent(BaseModel):
    type: Literal["new_meeting"] = ev.NEW_MEETING
    data: MeetingData


class CallOfferEvent(BaseModel):
    type: Literal["call_offer"] = ev.CALL_OFFER
    data: CallOfferData


class CallAnswerEvent(BaseModel):
    type: Literal["call_answer"] = ev.CALL_ANSWER
    data: CallAnswerData


class IceCandidateEvent(BaseModel):
    type: Literal["ice_candidate"] = ev.ICE_CANDIDATE
    data: IceCandidateData


class CallEndEvent(BaseModel):
    type: Literal["call_end"] = ev.CALL_END
    data: CallEndData


class CallDeclineEvent(BaseModel):
    type: Literal["call_decline"] = ev.CALL_DECLINE
    data: CallDeclineData


Event = Annotated[
    Union[
        NewNotificationEvent,
        NewMessageEvent,
        MessageDeletedEvent,
        ReactionRemovedEvent,
        AuxStatusUpdateEvent,
        EmployeeStatusUpdateEvent,
        NewMeetingEvent,
        CallOfferEvent,
        CallAnswerEvent,
        IceCandidateEvent,
        CallEndEvent,
        CallDeclineEvent,
    ],
    Field(discriminator="type"),
]

CallSignalEvent = Union[
    CallOfferEvent, CallAnswerEvent, IceCandidateEvent, CallEndEvent, CallDeclineEvent
]

_event_adapter: TypeAdapter = TypeAdapter(Event)


def parse_event(frame: Union[str, bytes, dict[str, Any]]) -> Event:
    """Parse a wire frame into its concrete event class.

    Raises EventParseError for malformed JSON, unknown types, or payloads
    that don't match their type.
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = json.loads(frame)
        except json.JSONDecodeError as e:
            raise EventParseError(f"Frame is not JSON: {e}") from e
    if not isinstance(frame, dict):
        raise EventParseError("Frame must be a JSON object")
    try:
        return _event_adapter.validate_python(frame)
    except ValidationError as e:
        raise EventParseError(
            f"Invalid '{frame.get('type')}' event: {e.error_count()} error(s)"
        ) from e


def make_event(event_type: str, data: dict[str, Any]) -> Event:
    """Build a typed event from a type name and a payload dict."""
    return parse_event({"type": event_type, "data": data})


def dump_event(event: BaseModel) -> str:
    """Serialize an event to its wire form."""
    return event.model_dump_json()
