"""Call sessions — the client-side call state machine.

Learn: One CallSession is one call attempt:

    idle → initiated → ringing → connected → ended
                 ╰────────┴→ rejected | busy | missed | failed

Terminal states never change again. Rules worth knowing:
- The ring timer belongs to the session; it starts on entering "ringing"
  and is cancelled exactly once when ringing ends any other way. If it
  fires first the call is "missed" and the peer is told: the caller sends
  call_end, the receiver sends call_decline, both with reason "timeout".
- hangup() from "connected" computes the duration; before the call is
  answered it ends the attempt as "missed".
- Losing the signaling channel ends a connected call and fails one that
  hasn't connected yet. Failing to send the offer fails the call.
- SDP and ICE payloads never change state; they're handed to listeners.

CallManager owns the single active session of the local user, maps bus
events to transitions, emits the matching signaling frames to the peer,
and writes exactly one call-log record per terminal session.
"""

import asyncio
import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import structlog

from staffline.client.clock import Scheduler, TimerHandle
from staffline.config import settings
from staffline.schemas.call import CallLogCreate
from staffline.schemas.events import (
    CallAnswerData,
    CallAnswerEvent,
    CallDeclineData,
    CallDeclineEvent,
    CallEndData,
    CallEndEvent,
    CallOfferData,
    CallOfferEvent,
    IceCandidateData,
    IceCandidateEvent,
)

logger = structlog.get_logger()


class CallState(str, Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"
    MISSED = "missed"
    REJECTED = "rejected"
    BUSY = "busy"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {CallState.ENDED, CallState.MISSED, CallState.REJECTED, CallState.BUSY, CallState.FAILED}
)
_LIVE = (CallState.IDLE, CallState.INITIATED, CallState.RINGING, CallState.CONNECTED)


class CallStateError(Exception):
    """Raised when a transition is not allowed from the current state."""


class CallBusyError(CallStateError):
    """Raised when starting a call while another one is still live."""


TransitionListener = Callable[["CallSession", CallState], None]


class CallLogSink(Protocol):
    """Where terminal call records go (the REST client in production)."""

    async def record_call(self, log: CallLogCreate) -> Any: ...


# ─── Session ─────────────────────────────────────────────


class CallSession:
    def __init__(
        self,
        call_id: str,
        caller_id: str,
        receiver_id: str,
        scheduler: Scheduler,
        kind: str = "audio",
        room_id: Optional[str] = None,
        ring_timeout: Optional[float] = None,
        incoming: bool = False,
    ):
        self.id = call_id
        self.caller_id = caller_id
        self.receiver_id = receiver_id
        self.kind = kind
        self.room_id = room_id
        self.incoming = incoming
        self.scheduler = scheduler
        self.ring_timeout = (
            ring_timeout if ring_timeout is not None else settings.call_ring_timeout_seconds
        )

        self.state = CallState.IDLE
        self.started_at: Optional[float] = None
        self.connected_at: Optional[float] = None
        self.ended_at: Optional[float] = None
        self.duration: Optional[int] = None
        self.end_reason: Optional[str] = None

        self._ring_timer: Optional[TimerHandle] = None
        self._listeners: list[TransitionListener] = []

    def __repr__(self) -> str:
        return f"<CallSession {self.id} {self.state.value}>"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def peer_id(self) -> str:
        return self.caller_id if self.incoming else self.receiver_id

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    # ─── Transitions ──────────────────────────────────────

    def initiate(self) -> None:
        """Outgoing call: idle → initiated."""
        self._transition(CallState.INITIATED, (CallState.IDLE,))

    def offer_delivered(self) -> None:
        """Outgoing call: the offer reached the channel, start ringing."""
        self._transition(CallState.RINGING, (CallState.INITIATED,))

    def receive(self) -> None:
        """Incoming call: idle → ringing."""
        self._transition(CallState.RINGING, (CallState.IDLE,))

    def answer(self) -> None:
        self._transition(CallState.CONNECTED, (CallState.RINGING,))

    def decline(self, reason: str = "declined") -> None:
        self._transition(CallState.REJECTED, (CallState.INITIATED, CallState.RINGING), reason)

    def line_busy(self) -> None:
        self._transition(CallState.BUSY, (CallState.INITIATED, CallState.RINGING), "busy")

    def fail(self, reason: str) -> None:
        self._transition(CallState.FAILED, _LIVE, reason)

    def hangup(self) -> None:
        if self.state == CallState.CONNECTED:
            self._transition(CallState.ENDED, (CallState.CONNECTED,), "hangup")
        else:
            self._transition(
                CallState.MISSED, (CallState.INITIATED, CallState.RINGING), "hangup_before_answer"
            )

    def connection_lost(self) -> None:
        if self.state == CallState.CONNECTED:
            self._transition(CallState.ENDED, (CallState.CONNECTED,), "connection_lost")
        else:
            self.fail("connection_lost")

    def peer_timed_out(self) -> None:
        """The peer's ring timer fired before ours."""
        if self.state == CallState.CONNECTED:
            self._transition(CallState.ENDED, (CallState.CONNECTED,), "peer_timeout")
        else:
            self._transition(
                CallState.MISSED, (CallState.INITIATED, CallState.RINGING), "peer_timeout"
            )

    def _on_ring_timeout(self) -> None:
        self._ring_timer = None
        if self.state != CallState.RINGING:
            return
        self._transition(CallState.MISSED, (CallState.RINGING,), "timeout")

    def _transition(
        self, new: CallState, allowed: tuple[CallState, ...], reason: Optional[str] = None
    ) -> None:
        if self.state not in allowed:
            raise CallStateError(
                f"Call {self.id}: cannot go {self.state.value} → {new.value}"
            )
        previous = self.state
        if previous == CallState.RINGING:
            self._cancel_ring_timer()

        now = self.scheduler.now()
        self.state = new
        if previous == CallState.IDLE:
            self.started_at = now
        if new == CallState.RINGING:
            self._ring_timer = self.scheduler.call_later(self.ring_timeout, self._on_ring_timeout)
        elif new == CallState.CONNECTED:
            self.connected_at = now
        elif new in TERMINAL_STATES:
            self.ended_at = now
            self.end_reason = reason
            if new == CallState.ENDED and self.connected_at is not None:
                self.duration = int(math.floor(now - self.connected_at + 0.5))

        logger.info(
            "call.transition",
            call_id=self.id,
            previous=previous.value,
            state=new.value,
            reason=self.end_reason if new in TERMINAL_STATES else None,
        )
        for listener in list(self._listeners):
            try:
                listener(self, previous)
            except Exception:
                logger.exception("call.listener_failed", call_id=self.id)

    def _cancel_ring_timer(self) -> None:
        if self._ring_timer is not None:
            self._ring_timer.cancel()
            self._ring_timer = None

    def to_log(self) -> CallLogCreate:
        """Terminal record for the call-log store."""
        if not self.is_terminal:
            raise CallStateError(f"Call {self.id} is still {self.state.value}")
        return CallLogCreate(
            id=self.id,
            caller_id=self.caller_id,
            receiver_id=self.receiver_id,
            kind=self.kind,
            status=self.state.value,
            room_id=self.room_id,
            started_at=_as_datetime(self.started_at if self.started_at is not None else self.ended_at),
            ended_at=_as_datetime(self.ended_at),
            duration=self.duration,
        )


def _as_datetime(ts: Optional[float]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


# ─── Manager ─────────────────────────────────────────────


class SignalSender(Protocol):
    def send(self, event: Any) -> bool: ...


class CallManager:
    """The local user's calls: one live session at a time."""

    def __init__(
        self,
        user_id: str,
        channel: SignalSender,
        scheduler: Scheduler,
        log_sink: Optional[CallLogSink] = None,
        ring_timeout: Optional[float] = None,
        user_name: str = "",
    ):
        self.user_id = user_id
        self.user_name = user_name
        self.channel = channel
        self.scheduler = scheduler
        self.log_sink = log_sink
        self.ring_timeout = ring_timeout

        self.active: Optional[CallSession] = None
        self._listeners: list[TransitionListener] = []
        self._signal_listeners: list[Callable[[Any], None]] = []
        self._logged: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self.active is not None and not self.active.is_terminal

    def add_listener(self, listener: TransitionListener) -> Callable[[], None]:
        """Listen to every transition of every session: (session, previous)."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def add_signal_listener(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        """Receive SDP/ICE-carrying events for the active call (media layer)."""
        self._signal_listeners.append(listener)
        return lambda: self._signal_listeners.remove(listener)

    # ─── Local actions ────────────────────────────────────

    def start_call(
        self,
        receiver_id: str,
        kind: str = "audio",
        room_id: Optional[str] = None,
        sdp: Optional[dict[str, Any]] = None,
    ) -> CallSession:
        if self.busy:
            raise CallBusyError(f"Already in call {self.active.id}")

        session = self._new_session(
            uuid.uuid4().hex, self.user_id, receiver_id, kind, room_id, incoming=False
        )
        session.initiate()
        offer = CallOfferEvent(
            data=CallOfferData(
                call_id=session.id,
                to=receiver_id,
                from_user=self.user_id,
                room_id=room_id,
                kind=kind,
                caller_name=self.user_name,
                sdp=sdp,
            )
        )
        if self.channel.send(offer):
            session.offer_delivered()
        else:
            session.fail("offer_not_sent")
        return session

    def answer(self, sdp: Optional[dict[str, Any]] = None) -> CallSession:
        session = self._require_active()
        session.answer()
        self.channel.send(
            CallAnswerEvent(data=CallAnswerData(**self._header(session), sdp=sdp))
        )
        return session

    def decline(self) -> CallSession:
        session = self._require_active()
        session.decline()
        self.channel.send(
            CallDeclineEvent(data=CallDeclineData(**self._header(session), reason="declined"))
        )
        return session

    def hangup(self) -> CallSession:
        session = self._require_active()
        session.hangup()
        self.channel.send(CallEndEvent(data=CallEndData(**self._header(session), reason="hangup")))
        return session

    def send_ice_candidate(self, candidate: dict[str, Any]) -> bool:
        session = self._require_active()
        return self.channel.send(
            IceCandidateEvent(data=IceCandidateData(**self._header(session), candidate=candidate))
        )

    # ─── Bus events ───────────────────────────────────────

    def handle_event(self, event: Any) -> None:
        """Bus subscriber for the five call-signaling events."""
        if isinstance(event, CallOfferEvent):
            self._on_offer(event)
            return
        if not isinstance(
            event, (CallAnswerEvent, CallDeclineEvent, CallEndEvent, IceCandidateEvent)
        ):
            return

        session = self.active
        if session is None or session.id != event.data.call_id or session.is_terminal:
            logger.debug("call.stale_signal", event_type=event.type, call_id=event.data.call_id)
            return

        if isinstance(event, IceCandidateEvent):
            self._notify_signal(event)
        elif isinstance(event, CallAnswerEvent):
            if session.state == CallState.RINGING and not session.incoming:
                session.answer()
                self._notify_signal(event)
        elif isinstance(event, CallDeclineEvent):
            if event.data.reason == "busy":
                session.line_busy()
            elif event.data.reason == "timeout":
                session.peer_timed_out()
            else:
                session.decline(event.data.reason or "declined")
        elif isinstance(event, CallEndEvent):
            if event.data.reason == "timeout":
                session.peer_timed_out()
            else:
                session.hangup()

    def handle_connection_change(self, connected: bool) -> None:
        if not connected and self.busy:
            self.active.connection_lost()

    def _on_offer(self, event: CallOfferEvent) -> None:
        data = event.data
        caller = data.from_user
        if not caller:
            logger.warning("call.offer_without_sender", call_id=data.call_id)
            return
        if self.active is not None and self.active.id == data.call_id:
            logger.debug("call.duplicate_offer", call_id=data.call_id)
            return
        if self.busy:
            logger.info("call.busy_decline", call_id=data.call_id, caller=caller)
            self.channel.send(
                CallDeclineEvent(
                    data=CallDeclineData(
                        call_id=data.call_id,
                        to=caller,
                        from_user=self.user_id,
                        room_id=data.room_id,
                        reason="busy",
                    )
                )
            )
            return
        session = self._new_session(
            data.call_id, caller, self.user_id, data.kind, data.room_id, incoming=True
        )
        session.receive()
        self._notify_signal(event)

    # ─── Internals ────────────────────────────────────────

    def _new_session(
        self,
        call_id: str,
        caller_id: str,
        receiver_id: str,
        kind: str,
        room_id: Optional[str],
        incoming: bool,
    ) -> CallSession:
        session = CallSession(
            call_id,
            caller_id,
            receiver_id,
            self.scheduler,
            kind=kind,
            room_id=room_id,
            ring_timeout=self.ring_timeout,
            incoming=incoming,
        )
        session.add_listener(self._on_transition)
        self.active = session
        return session

    def _require_active(self) -> CallSession:
        if self.active is None or self.active.is_terminal:
            raise CallStateError("No active call")
        return self.active

    def _header(self, session: CallSession) -> dict[str, Any]:
        return {
            "call_id": session.id,
            "to": session.peer_id,
            "from_user": self.user_id,
            "room_id": session.room_id,
        }

    def _notify_signal(self, event: Any) -> None:
        for listener in list(self._signal_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("call.signal_listener_failed", event_type=event.type)

    def _on_transition(self, session: CallSession, previous: CallState) -> None:
        for listener in list(self._listeners):
            try:
                listener(session, previous)
            except Exception:
                logger.exception("call.listener_failed", call_id=session.id)
        if session.is_terminal:
            if session.end_reason == "timeout":
                self._signal_timeout(session)
            self._persist(session)

    def _signal_timeout(self, session: CallSession) -> None:
        # The caller ends the attempt; the receiver declines it
        if session.incoming:
            event = CallDeclineEvent(data=CallDeclineData(**self._header(session), reason="timeout"))
        else:
            event = CallEndEvent(data=CallEndData(**self._header(session), reason="timeout"))
        self.channel.send(event)

    def _persist(self, session: CallSession) -> None:
        if self.log_sink is None or session.id in self._logged:
            return
        self._logged.add(session.id)
        task = asyncio.create_task(self._record(session.to_log()))
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            self._logged.discard(session.id)

        task.add_done_callback(_done)

    async def _record(self, log: CallLogCreate) -> None:
        try:
            await self.log_sink.record_call(log)
            logger.info("call.logged", call_id=log.id, status=log.status)
        except Exception as e:
            logger.warning("call.log_failed", call_id=log.id, error=str(e))

    async def flush(self) -> None:
        """Wait for pending call-log writes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
