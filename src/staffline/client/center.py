"""Notification center — wires the client core together.

Learn: One subscriber on the event bus drives everything:

  new_notification → dedup → unread set → policy/presentation → auto-read
  new_message      → dedup (by message id) → policy as a message notification
  call signaling   → CallManager (incoming offers ring via the policy
                     until the session leaves "ringing")

Everything else (presence, reactions, meetings) is left to whoever else
subscribes to the bus. navigate() and set_page_visible() feed the view
context; load() seeds the unread set from the REST inbox, and the inbox is
reloaded after every reconnect since nothing is replayed over the socket.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from staffline.client.auto_read import AutoMarkReadCoordinator
from staffline.client.bus import EventBus, Unsubscribe
from staffline.client.calls import CallManager, CallSession, CallState
from staffline.client.dedup import NotificationDeduplicator
from staffline.client.location import Location
from staffline.client.presentation import NotificationPresenter, ViewContext, target_route
from staffline.schemas.events import (
    CallAnswerEvent,
    CallDeclineEvent,
    CallEndEvent,
    CallOfferEvent,
    IceCandidateEvent,
    NewMessageEvent,
    NewNotificationEvent,
)
from staffline.schemas.notification import NotificationRead

logger = structlog.get_logger()

_CALL_EVENTS = (CallOfferEvent, CallAnswerEvent, CallDeclineEvent, CallEndEvent, IceCandidateEvent)

InboxLoader = Callable[[], Awaitable[list[NotificationRead]]]
Navigator = Callable[[str], None]


class NotificationCenter:
    def __init__(
        self,
        bus: EventBus,
        presenter: NotificationPresenter,
        dedup: NotificationDeduplicator,
        auto_read: AutoMarkReadCoordinator,
        calls: Optional[CallManager] = None,
        navigator: Optional[Navigator] = None,
        inbox_loader: Optional[InboxLoader] = None,
    ):
        self.bus = bus
        self.presenter = presenter
        self.dedup = dedup
        self.auto_read = auto_read
        self.calls = calls
        self.navigator = navigator
        self.inbox_loader = inbox_loader

        self.user_id: Optional[str] = None
        self.view = ViewContext()
        self._unread: dict[str, NotificationRead] = {}
        self._unsubscribe: Optional[Unsubscribe] = None
        self._remove_call_listener: Optional[Callable[[], None]] = None
        self._tasks: set[asyncio.Task] = set()

    # ─── Lifecycle ────────────────────────────────────────

    def start(self, user_id: str) -> None:
        if self._unsubscribe is not None:
            return
        self.user_id = user_id
        self.dedup.start()
        if self.calls is not None:
            self._remove_call_listener = self.calls.add_listener(self._on_call_transition)
        self._unsubscribe = self.bus.subscribe(self._on_event, self._on_connection_change)
        self.bus.connect(user_id)
        logger.info("center.started", user_id=user_id)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._remove_call_listener is not None:
            self._remove_call_listener()
            self._remove_call_listener = None
        self.dedup.stop()
        await self.flush()
        logger.info("center.stopped", user_id=self.user_id)

    async def flush(self) -> None:
        """Wait for background work: inbox reloads, acknowledgements, call logs."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.auto_read.flush()
        self._prune_acknowledged()
        if self.calls is not None:
            await self.calls.flush()

    # ─── View context ─────────────────────────────────────

    @property
    def location(self) -> Location:
        return self.view.location

    def navigate(self, route: str) -> None:
        self.view = ViewContext(page_visible=self.view.page_visible, location=Location.parse(route))
        self._reconcile()

    def set_page_visible(self, visible: bool) -> None:
        self.view = ViewContext(page_visible=visible, location=self.view.location)

    def activate(self, notification: NotificationRead) -> str:
        """The user clicked a notification: go where it points."""
        route = target_route(notification)
        if self.navigator is not None:
            self.navigator(route)
        self.navigate(route)
        return route

    # ─── Unread set ───────────────────────────────────────

    def load(self, notifications: Iterable[NotificationRead]) -> None:
        """Seed the unread set from the inbox. Loaded ids count as seen."""
        for n in notifications:
            self.dedup.should_process(n.id)
            if n.is_read:
                self._unread.pop(n.id, None)
            else:
                self._unread[n.id] = n
        self._reconcile()

    @property
    def unread(self) -> list[NotificationRead]:
        return [n for n in self._unread.values() if not self.auto_read.is_acknowledged(n.id)]

    # ─── Bus ──────────────────────────────────────────────

    def _on_event(self, event: Any) -> None:
        if isinstance(event, NewNotificationEvent):
            self._on_notification(event.data)
        elif isinstance(event, NewMessageEvent):
            self._on_message(event)
        elif isinstance(event, _CALL_EVENTS):
            if self.calls is not None:
                self.calls.handle_event(event)

    def _on_connection_change(self, connected: bool) -> None:
        logger.info("center.connection", connected=connected)
        if self.calls is not None:
            self.calls.handle_connection_change(connected)
        if connected and self.inbox_loader is not None:
            self._spawn(self._reload_inbox())

    def _on_notification(self, notification: NotificationRead) -> None:
        if not self.dedup.should_process(notification.id):
            return
        if not notification.is_read:
            self._unread[notification.id] = notification
        self.presenter.present(notification, self.view)
        self._reconcile()

    def _on_message(self, event: NewMessageEvent) -> None:
        data = event.data
        if data.sender_id == self.user_id:
            return
        key = f"message:{data.message_id}"
        if not self.dedup.should_process(key):
            return
        self.presenter.present(
            NotificationRead(
                id=key,
                user_id=self.user_id or "",
                title=data.sender_name or "New message",
                message=data.content,
                category="message",
                metadata={"room_id": data.room_id, "message_id": data.message_id},
                created_at=datetime.now(timezone.utc),
            ),
            self.view,
        )

    def _on_call_transition(self, session: CallSession, previous: CallState) -> None:
        if session.incoming and previous == CallState.RINGING:
            self.presenter.stop_tone()
        if not (session.incoming and session.state == CallState.RINGING):
            return
        label = "Incoming video call" if session.kind == "video" else "Incoming audio call"
        self.presenter.present(
            NotificationRead(
                id=f"call:{session.id}",
                user_id=self.user_id or "",
                title=label,
                message=f"{session.caller_id} is calling you",
                category="call",
                metadata={"call_id": session.id, "room_id": session.room_id},
                created_at=datetime.now(timezone.utc),
            ),
            self.view,
        )

    # ─── Background work ──────────────────────────────────

    def _reconcile(self) -> None:
        self._prune_acknowledged()
        self.auto_read.schedule(self.view.location, list(self._unread.values()))

    def _prune_acknowledged(self) -> None:
        for notification_id in [i for i in self._unread if self.auto_read.is_acknowledged(i)]:
            del self._unread[notification_id]

    async def _reload_inbox(self) -> None:
        try:
            notifications = await self.inbox_loader()
        except Exception as e:
            logger.warning("center.inbox_reload_failed", error=str(e))
            return
        self.load(notifications)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
