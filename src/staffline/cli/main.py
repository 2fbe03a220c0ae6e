"""Staffline CLI — listen for notifications and calls, browse inbox and call history.

Usage:
    staffline listen --user-id 42            # Run the client core headless
    staffline inbox --unread                 # Unread notifications
    staffline calls                          # Call history
    staffline sound off                      # Persisted sound preference
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Optional

import click

from staffline import __version__
from staffline.client.api import StafflineClient
from staffline.client.auto_read import AutoMarkReadCoordinator
from staffline.client.bus import EventBus
from staffline.client.calls import CallManager, CallSession, CallState
from staffline.client.center import NotificationCenter
from staffline.client.clock import LoopScheduler
from staffline.client.dedup import NotificationDeduplicator
from staffline.client.presentation import (
    DesktopNotification,
    NotificationPresenter,
    Preferences,
    TonePattern,
    tone_for,
)
from staffline.client.transport import WebSocketTransport
from staffline.config import settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) if row.get(k) is not None else "—")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    """Map call statuses to click colors."""
    colors = {
        "initiated": "white",
        "ringing": "yellow",
        "connected": "cyan",
        "ended": "green",
        "missed": "red",
        "rejected": "magenta",
        "busy": "yellow",
        "failed": "red",
    }
    return colors.get(status, "white")


# ---------------------------------------------------------------------------
# Terminal capabilities
# ---------------------------------------------------------------------------


class TerminalChannel:
    """Desktop notifications rendered as lines on the terminal."""

    def is_supported(self) -> bool:
        return True

    def permission(self) -> str:
        return "granted"

    async def request_permission(self) -> str:
        return "granted"

    def show(self, notification: DesktopNotification) -> None:
        fg = "yellow" if notification.category == "call" else "cyan"
        click.secho(f"[{notification.category}] {notification.title}", fg=fg, bold=True)
        if notification.body:
            click.echo(f"    {notification.body}")
        click.echo(f"    → {notification.route}")


class TerminalBell:
    """One terminal bell per tone; the call pattern repeats until stopped."""

    def __init__(self):
        self._ring: Optional[asyncio.Task] = None

    @property
    def ringing(self) -> bool:
        return self._ring is not None and not self._ring.done()

    def play_tone(self, category: str) -> None:
        pattern = tone_for(category)
        if pattern.repeat_every is None:
            self._beep(pattern)
            return
        self.stop_tone()
        self._ring = asyncio.get_running_loop().create_task(self._repeat(pattern))

    def stop_tone(self) -> None:
        if self._ring is not None:
            self._ring.cancel()
            self._ring = None

    def _beep(self, pattern: TonePattern) -> None:
        click.echo("\a" * len(pattern.tones), nl=False)

    async def _repeat(self, pattern: TonePattern) -> None:
        while True:
            self._beep(pattern)
            await asyncio.sleep(pattern.repeat_every)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="staffline")
def main():
    """Staffline — real-time notifications, presence and calls."""


# ---------------------------------------------------------------------------
# staffline listen
# ---------------------------------------------------------------------------


@main.command()
@click.option("--user-id", "-u", required=True, help="User to listen as")
@click.option("--token", envvar="STAFFLINE_TOKEN", help="JWT (or set STAFFLINE_TOKEN)")
@click.option("--route", default="/dashboard", help="Page the listener pretends to be on")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def listen(user_id: str, token: Optional[str], route: str, verbose: bool):
    """Connect to the event channel and render notifications and calls."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        _run(_listen_impl(user_id, token, route))
    except KeyboardInterrupt:
        click.echo("\nStopped.")


def _print_call(session: CallSession, previous: CallState) -> None:
    state = session.state.value
    line = f"call {session.id[:8]} {previous.value} → {click.style(state, fg=_status_color(state))}"
    if session.duration is not None:
        line += f" ({session.duration}s)"
    click.echo(line)


async def _listen_impl(user_id: str, token: Optional[str], route: str):
    scheduler = LoopScheduler()
    api = StafflineClient(token=token)
    bus = EventBus(settings.ws_url, WebSocketTransport(token=token))
    calls = CallManager(user_id, bus, scheduler, log_sink=api)
    calls.add_listener(_print_call)

    center = NotificationCenter(
        bus=bus,
        presenter=NotificationPresenter(
            tones=TerminalBell(),
            foreground=TerminalChannel(),
            preferences=Preferences.load(),
        ),
        dedup=NotificationDeduplicator(scheduler),
        auto_read=AutoMarkReadCoordinator(api),
        calls=calls,
        inbox_loader=lambda: api.list_notifications(unread=True),
    )
    center.navigate(route)
    center.start(user_id)

    click.secho(f"Listening as {user_id} on {settings.ws_url} (Ctrl-C to stop)", bold=True)
    try:
        await asyncio.Event().wait()
    finally:
        await center.stop()
        await bus.close()
        await api.aclose()


# ---------------------------------------------------------------------------
# staffline inbox
# ---------------------------------------------------------------------------


@main.command()
@click.option("--token", envvar="STAFFLINE_TOKEN", help="JWT (or set STAFFLINE_TOKEN)")
@click.option("--unread", is_flag=True, help="Only unread notifications")
@click.option("--limit", "-l", default=50, help="Max results")
def inbox(token: Optional[str], unread: bool, limit: int):
    """List your notifications."""
    _run(_inbox_impl(token, unread, limit))


async def _inbox_impl(token: Optional[str], unread: bool, limit: int):
    async with StafflineClient(token=token) as api:
        notifications = await api.list_notifications(unread=unread, limit=limit)

    if not notifications:
        click.echo("No notifications.")
        return

    click.secho(f"Notifications ({len(notifications)}):", bold=True)
    click.echo()
    _print_table(
        [
            {
                "read": "" if n.is_read else "●",
                "category": n.category,
                "title": n.title,
                "created_at": n.created_at.strftime("%Y-%m-%d %H:%M"),
            }
            for n in notifications
        ],
        [("", "read", 1), ("Category", "category", 14), ("When", "created_at", 16), ("Title", "title", 60)],
    )


# ---------------------------------------------------------------------------
# staffline calls
# ---------------------------------------------------------------------------


@main.command()
@click.option("--token", envvar="STAFFLINE_TOKEN", help="JWT (or set STAFFLINE_TOKEN)")
@click.option("--room", help="Only calls placed from this chat room")
@click.option("--limit", "-l", default=50, help="Max results")
def calls(token: Optional[str], room: Optional[str], limit: int):
    """Show call history."""
    _run(_calls_impl(token, room, limit))


async def _calls_impl(token: Optional[str], room: Optional[str], limit: int):
    async with StafflineClient(token=token) as api:
        if room:
            logs = await api.room_calls(room, limit=limit)
        else:
            logs = await api.call_history(limit=limit)

    if not logs:
        click.echo("No calls.")
        return

    click.secho(f"Calls ({len(logs)}):", bold=True)
    click.echo()
    _print_table(
        [c.model_dump(mode="json") for c in logs],
        [
            ("Started", "started_at", 20),
            ("Kind", "kind", 6),
            ("Status", "status", 10),
            ("Caller", "caller_id", 12),
            ("Receiver", "receiver_id", 12),
            ("Secs", "duration", 6),
        ],
    )


# ---------------------------------------------------------------------------
# staffline sound
# ---------------------------------------------------------------------------


@main.command()
@click.argument("state", required=False, type=click.Choice(["on", "off"]))
def sound(state: Optional[str]):
    """Show or set whether notifications play sounds."""
    prefs = Preferences.load()
    if state is not None:
        prefs.sound_enabled = state == "on"
        prefs.save()
    label = "on" if prefs.sound_enabled else "off"
    click.echo(f"Sound is {click.style(label, fg='green' if prefs.sound_enabled else 'red')}")
