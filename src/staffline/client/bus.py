"""Event bus — one shared connection per user, fanned out to subscribers.

Learn: Every screen of the app wants live events (notifications, chat,
presence, calls) but the server should only see one socket per tab. The
bus owns that socket and hands each inbound event to every subscriber.

Lifecycle rules:
- The connection is open iff at least one subscriber is registered and a
  user identity is known. The last unsubscribe tears it down.
- connect(user_id) is idempotent for the same user; a different user
  replaces the connection.
- On every (re)connect the subscribe handshake is sent first, so the server
  resumes routing this user's frames.
- Reconnection backs off exponentially: initial delay, doubling per failed
  attempt, capped at the max delay, reset after a successful connect.
- Nothing is buffered across disconnects: send() while offline is a
  logged no-op returning False. Events missed while offline are lost;
  the notification inbox is reloaded over REST instead.
"""

import asyncio
import itertools
import json
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from staffline.client.transport import Connection, Transport
from staffline.config import settings
from staffline.events import types as ev
from staffline.schemas.events import Event, EventParseError, dump_event, parse_event

logger = structlog.get_logger()

EventHandler = Callable[[Event], None]
ConnectionHandler = Callable[[bool], None]
Unsubscribe = Callable[[], None]


@dataclass
class _Subscriber:
    on_event: EventHandler
    on_connection_change: Optional[ConnectionHandler] = None


class EventBus:
    """Shared real-time channel for one user."""

    def __init__(
        self,
        url: str,
        transport: Transport,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        self.url = url
        self.transport = transport
        self._sleep = sleep
        self.initial_delay = initial_delay if initial_delay is not None else settings.reconnect_initial_delay
        self.max_delay = max_delay if max_delay is not None else settings.reconnect_max_delay

        self._ids = itertools.count()
        self._subscribers: dict[int, _Subscriber] = {}
        self._user_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping: set[asyncio.Task] = set()
        self._conn: Optional[Connection] = None
        self._outbound: Optional[asyncio.Queue[str]] = None
        self._connected = False
        self._connected_event = asyncio.Event()
        self._closed = False

    # ─── State ────────────────────────────────────────────

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def is_open(self) -> bool:
        """Whether the bus is holding (or trying to hold) a connection."""
        return self._task is not None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ─── Identity + subscriptions ─────────────────────────

    def connect(self, user_id: str) -> None:
        """Bind the bus to a user. Idempotent for the same user."""
        if self._closed:
            raise RuntimeError("EventBus is closed")
        if user_id == self._user_id and self._task is not None:
            return
        if self._task is not None:
            logger.info("bus.identity_changed", old=self._user_id, new=user_id)
            self._stop()
        self._user_id = user_id
        self._ensure_running()

    def subscribe(
        self,
        on_event: EventHandler,
        on_connection_change: Optional[ConnectionHandler] = None,
    ) -> Unsubscribe:
        """Register a subscriber. Returns a callable that unregisters it."""
        if self._closed:
            raise RuntimeError("EventBus is closed")
        key = next(self._ids)
        self._subscribers[key] = _Subscriber(on_event, on_connection_change)
        self._ensure_running()

        def unsubscribe() -> None:
            if self._subscribers.pop(key, None) is None:
                return
            if not self._subscribers:
                logger.info("bus.last_subscriber_left", user_id=self._user_id)
                self._stop()

        return unsubscribe

    def send(self, event: BaseModel) -> bool:
        """Emit an event if connected. Returns False (and drops it) otherwise."""
        if not self._connected or self._outbound is None:
            logger.warning(
                "bus.send_while_disconnected",
                event_type=getattr(event, "type", None),
            )
            return False
        self._outbound.put_nowait(dump_event(event))
        return True

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until the bus is connected. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_stopped(self) -> None:
        """Wait for torn-down connections to finish closing."""
        while self._stopping:
            await asyncio.gather(*list(self._stopping), return_exceptions=True)

    async def close(self) -> None:
        """Dispose of the bus: drop subscribers and close the connection."""
        self._closed = True
        self._subscribers.clear()
        self._stop()
        await self.wait_stopped()
        logger.info("bus.closed")

    # ─── Connection loop ──────────────────────────────────

    def _ensure_running(self) -> None:
        if self._closed or self._task is not None:
            return
        if self._user_id is None or not self._subscribers:
            return
        self._task = asyncio.create_task(self._run(self._user_id))

    def _stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        self._stopping.add(task)
        task.add_done_callback(self._stopping.discard)

    async def _run(self, user_id: str) -> None:
        delay = self.initial_delay
        while True:
            try:
                conn = await self.transport.open(self.url)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("bus.connect_failed", url=self.url, error=str(e), retry_in=delay)
            else:
                delay = self.initial_delay
                await self._serve(conn, user_id, delay)
            await self._sleep(delay)
            delay = min(delay * 2, self.max_delay)

    async def _serve(self, conn: Connection, user_id: str, retry_in: float) -> None:
        """Run one connection until it drops (or the bus stops)."""
        writer: Optional[asyncio.Task] = None
        try:
            await conn.send(
                json.dumps({"type": ev.SUBSCRIBE, "data": {"user_id": user_id}})
            )
            queue: asyncio.Queue[str] = asyncio.Queue()
            writer = asyncio.create_task(self._write_loop(conn, queue))
            self._conn = conn
            self._outbound = queue
            self._set_connected(True)
            logger.info("bus.connected", user_id=user_id)

            while True:
                self._dispatch(await conn.recv())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("bus.connection_lost", user_id=user_id, error=str(e), retry_in=retry_in)
        finally:
            if writer is not None:
                writer.cancel()
            # A replacement connection may already be live
            if self._conn is conn:
                self._conn = None
                self._outbound = None
                self._set_connected(False)
            try:
                await conn.close()
            except Exception as e:
                logger.debug("bus.close_failed", error=str(e))

    async def _write_loop(self, conn: Connection, queue: "asyncio.Queue[str]") -> None:
        while True:
            frame = await queue.get()
            try:
                await conn.send(frame)
            except Exception as e:
                logger.warning("bus.send_failed", error=str(e))

    # ─── Fan-out ──────────────────────────────────────────

    def _dispatch(self, frame: str) -> None:
        try:
            raw = json.loads(frame)
        except json.JSONDecodeError:
            logger.warning("bus.malformed_frame", frame=frame[:200])
            return
        if isinstance(raw, dict) and raw.get("type") in ev.CONTROL_FRAMES:
            logger.debug("bus.control_frame", frame_type=raw.get("type"))
            return
        try:
            event = parse_event(raw)
        except EventParseError as e:
            logger.warning("bus.unknown_frame", error=str(e))
            return

        for sub in list(self._subscribers.values()):
            try:
                sub.on_event(event)
            except Exception:
                logger.exception("bus.subscriber_failed", event_type=event.type)

    def _set_connected(self, value: bool) -> None:
        if value == self._connected:
            return
        self._connected = value
        if value:
            self._connected_event.set()
        else:
            self._connected_event.clear()
        for sub in list(self._subscribers.values()):
            if sub.on_connection_change is None:
                continue
            try:
                sub.on_connection_change(value)
            except Exception:
                logger.exception("bus.subscriber_failed", event_type="connection_change")
