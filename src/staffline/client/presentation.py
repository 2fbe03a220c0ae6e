"""Sound/visibility policy and notification presentation.

Learn: Whether a push becomes a desktop notification and a sound is a pure
decision over (notification, where the user is, is the page visible):

  page hidden                                → show + sound
  visible, message, viewing that chat room    → nothing (they're reading it)
  visible, task, on the tasks page            → nothing
  visible, anything else                      → show + sound

decide() is that table and nothing else. NotificationPresenter applies it
through two capabilities — a NotificationChannel (desktop notifications)
and a TonePlayer (synthesized tones) — so the policy runs without a
browser. The background-capable channel is preferred, the foreground one
is the fallback, and a denied or missing permission degrades to sound only.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel

from staffline.client.location import Location
from staffline.config import settings
from staffline.schemas.notification import NotificationRead

logger = structlog.get_logger()

ICON = "/favicon.ico"


# ─── Capabilities ────────────────────────────────────────


@dataclass(frozen=True)
class NotificationAction:
    action: str
    title: str


@dataclass(frozen=True)
class DesktopNotification:
    """Everything a platform needs to render one desktop notification."""
    title: str
    body: str
    tag: str
    category: str
    route: str
    icon: str = ICON
    badge: str = ICON
    require_interaction: bool = False
    vibrate: tuple[int, ...] = (200, 100, 200)
    actions: tuple[NotificationAction, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)


class NotificationChannel(Protocol):
    """Desktop notification capability (browser Notification / service worker)."""

    def is_supported(self) -> bool: ...

    def permission(self) -> str: ...

    async def request_permission(self) -> str: ...

    def show(self, notification: DesktopNotification) -> None: ...


class TonePlayer(Protocol):
    def play_tone(self, category: str) -> None: ...

    def stop_tone(self) -> None:
        """Silence a repeating pattern (the call ring)."""


# ─── Tones ───────────────────────────────────────────────


@dataclass(frozen=True)
class Tone:
    frequency: float
    duration: float
    start: float = 0.0


@dataclass(frozen=True)
class TonePattern:
    tones: tuple[Tone, ...]
    repeat_every: Optional[float] = None


TONE_PATTERNS: dict[str, TonePattern] = {
    "message": TonePattern((Tone(800, 0.1), Tone(1000, 0.1, start=0.1))),
    "call": TonePattern((Tone(480, 0.4), Tone(400, 0.4, start=0.45)), repeat_every=3.0),
    "task": TonePattern((Tone(600, 0.15), Tone(800, 0.15, start=0.15), Tone(1000, 0.15, start=0.3))),
    "system": TonePattern((Tone(700, 0.2),)),
}


def tone_for(category: str) -> TonePattern:
    return TONE_PATTERNS.get(category, TONE_PATTERNS["system"])


# ─── Policy ──────────────────────────────────────────────


@dataclass(frozen=True)
class ViewContext:
    page_visible: bool = True
    location: Location = field(default_factory=Location)


@dataclass(frozen=True)
class Decision:
    show: bool
    play_sound: bool


SHOW = Decision(show=True, play_sound=True)
SUPPRESS = Decision(show=False, play_sound=False)


def decide(notification: NotificationRead, view: ViewContext) -> Decision:
    if not view.page_visible:
        return SHOW

    location = view.location
    if notification.category == "message":
        if (
            location.view == "chat"
            and notification.room_id is not None
            and location.room_id == notification.room_id
        ):
            return SUPPRESS
        return SHOW

    if notification.category == "task" and location.view == "tasks":
        return SUPPRESS

    return SHOW


def target_route(notification: NotificationRead) -> str:
    """Where activating the notification takes the user."""
    category = notification.category
    if category == "message":
        room = notification.room_id
        if room is None:
            return "/chat"
        route = f"/chat?roomId={room}"
        if notification.message_id is not None:
            route += f"&messageId={notification.message_id}"
        return route
    if category == "task":
        task = notification.task_id
        return f"/tasks?taskId={task}" if task is not None else "/tasks"
    if category == "call":
        return "/call-history"
    if category == "leave_request":
        return "/hr"
    return "/dashboard"


def build_desktop_notification(notification: NotificationRead) -> DesktopNotification:
    is_call = notification.category == "call"
    return DesktopNotification(
        title=notification.title,
        body=notification.message,
        tag=notification.id,
        category=notification.category,
        route=target_route(notification),
        require_interaction=is_call,
        vibrate=(200, 100, 200, 100, 200) if is_call else (200, 100, 200),
        actions=(
            (NotificationAction("answer", "Answer"), NotificationAction("decline", "Decline"))
            if is_call
            else ()
        ),
        data={"notification_id": notification.id, **notification.metadata},
    )


# ─── Preferences ─────────────────────────────────────────


class Preferences(BaseModel):
    """User preferences persisted as JSON."""
    sound_enabled: bool = True

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Preferences":
        path = path or settings.preferences_path
        try:
            return cls.model_validate_json(path.read_text())
        except FileNotFoundError:
            return cls()
        except ValueError as e:
            logger.warning("preferences.unreadable", path=str(path), error=str(e))
            return cls()

    def save(self, path: Optional[Path] = None) -> None:
        path = path or settings.preferences_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.model_dump(), indent=2))


# ─── Presenter ───────────────────────────────────────────


class NotificationPresenter:
    """Applies the policy through the platform capabilities."""

    def __init__(
        self,
        tones: TonePlayer,
        background: Optional[NotificationChannel] = None,
        foreground: Optional[NotificationChannel] = None,
        preferences: Optional[Preferences] = None,
    ):
        self.tones = tones
        self.background = background
        self.foreground = foreground
        self.preferences = preferences or Preferences()

    def _channels(self) -> list[NotificationChannel]:
        return [c for c in (self.background, self.foreground) if c is not None and c.is_supported()]

    async def ensure_permission(self) -> str:
        """Ask for permission if it hasn't been decided yet. Returns the result."""
        channels = self._channels()
        if not channels:
            return "unsupported"
        channel = channels[0]
        current = channel.permission()
        if current != "default":
            return current
        result = await channel.request_permission()
        logger.info("notify.permission", result=result)
        return result

    def present(self, notification: NotificationRead, view: ViewContext) -> Decision:
        decision = decide(notification, view)
        if decision.show:
            self.show(build_desktop_notification(notification))
        if decision.play_sound and self.preferences.sound_enabled:
            self.tones.play_tone(notification.category)
        return decision

    def stop_tone(self) -> None:
        self.tones.stop_tone()

    def show(self, desktop: DesktopNotification) -> bool:
        """Show on the first channel that accepts it. Returns False if none did."""
        for channel in self._channels():
            if channel.permission() != "granted":
                continue
            try:
                channel.show(desktop)
                return True
            except Exception as e:
                logger.warning("notify.show_failed", tag=desktop.tag, error=str(e))
        logger.debug("notify.sound_only", tag=desktop.tag)
        return False
