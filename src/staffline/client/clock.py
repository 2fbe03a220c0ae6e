"""Clock and timers for the client core.

Learn: Every timer in the client (dedup sweep, ring timeout) goes through a
Scheduler instead of calling asyncio directly. Production code gets the
LoopScheduler; tests get a ManualScheduler and move time forward with
advance(), so "30 seconds later" runs in microseconds and deterministically.

now() is wall-clock seconds since the epoch — call logs store it as a
timestamp, so a monotonic clock would not do.
"""

import asyncio
import heapq
import itertools
import time
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Injectable clock + one-shot timers."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class _ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose time only moves when told to.

    Timers due at the same instant fire in the order they were scheduled.
    Timers scheduled by a firing callback still fire within the same
    advance() if they fall inside the window.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._seq = itertools.count()
        self._queue: list[tuple[float, int, _ManualTimer]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.when, next(self._seq), timer))
        return timer

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, timer = heapq.heappop(self._queue)
            self._now = max(self._now, when)
            if not timer.cancelled:
                timer.callback()
        self._now = target

    def pending(self) -> int:
        """Number of live (uncancelled) timers."""
        return sum(1 for _, _, t in self._queue if not t.cancelled)
