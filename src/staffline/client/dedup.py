"""Notification de-duplication.

Learn: The same notification can arrive twice (a reconnect races with the
REST reload, two tabs forward the same push). Each id is processed once:
should_process() records the first sighting and refuses the rest. A
periodic sweep forgets sightings older than the expiry window, so memory
stays bounded. Eviction only happens on a sweep: an id stays blocked
until the first sweep after its window has elapsed.

Process-local only — another device will happily show the same id.
"""

from typing import Optional

import structlog

from staffline.client.clock import Scheduler, TimerHandle
from staffline.config import settings

logger = structlog.get_logger()


class NotificationDeduplicator:
    def __init__(
        self,
        scheduler: Scheduler,
        expiry: Optional[float] = None,
        sweep_interval: Optional[float] = None,
    ):
        self.scheduler = scheduler
        self.expiry = expiry if expiry is not None else settings.dedup_expiry_seconds
        self.sweep_interval = (
            sweep_interval if sweep_interval is not None else settings.dedup_sweep_interval_seconds
        )
        self._seen: dict[str, float] = {}
        self._timer: Optional[TimerHandle] = None

    def start(self) -> None:
        """Start the periodic sweep."""
        if self._timer is None:
            self._schedule()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def should_process(self, notification_id: str) -> bool:
        if notification_id in self._seen:
            logger.debug("dedup.duplicate", notification_id=notification_id)
            return False
        self._seen[notification_id] = self.scheduler.now()
        return True

    def sweep(self) -> int:
        """Forget sightings older than the expiry window. Returns the count."""
        cutoff = self.scheduler.now() - self.expiry
        expired = [k for k, seen_at in self._seen.items() if seen_at < cutoff]
        for key in expired:
            del self._seen[key]
        if expired:
            logger.debug("dedup.swept", evicted=len(expired), remaining=len(self._seen))
        return len(expired)

    def __len__(self) -> int:
        return len(self._seen)

    def _schedule(self) -> None:
        self._timer = self.scheduler.call_later(self.sweep_interval, self._tick)

    def _tick(self) -> None:
        self.sweep()
        self._schedule()
