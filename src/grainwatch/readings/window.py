"""ReadingWindowStore -- latest and historical readings per (cell, metric).

Readings are append-only. The store answers the two questions condition
evaluation asks: what is the latest value, and what was the value some
duration ago. Retention keeps at least the longest active CHANGE window.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

from grainwatch.timeutil import Clock, to_utc, utcnow

if TYPE_CHECKING:
    from grainwatch.models.reading import Reading
    from grainwatch.models.trigger import MetricType, Trigger
    from grainwatch.storage.repositories import ReadingRepository

logger = logging.getLogger(__name__)


class ReadingWindowStore:
    """Read/write access to the reading log used by the trigger engine."""

    def __init__(
        self,
        repo: ReadingRepository,
        *,
        retention_days: int = 90,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._retention_floor = timedelta(days=retention_days)
        self._clock = clock

    def record(self, reading: Reading) -> bool:
        """Append *reading*. Returns False if it was already recorded."""
        inserted = self._repo.insert_if_absent(reading)
        if not inserted:
            logger.debug(
                "Duplicate reading %s/%s at %s ignored",
                reading.sensor_id, reading.metric.value, reading.recorded_at,
            )
        return inserted

    def latest(self, cell_id: str, metric: MetricType) -> Optional[Reading]:
        return self._repo.latest(cell_id, metric)

    def as_of(
        self,
        cell_id: str,
        metric: MetricType,
        duration: timedelta,
        *,
        reference: Optional[datetime] = None,
    ) -> Optional[Reading]:
        """Most recent reading recorded at or before ``reference - duration``.

        *reference* defaults to now. Returns None when no reading is that old.
        """
        ref = to_utc(reference) if reference is not None else self._clock()
        return self._repo.latest_at_or_before(cell_id, metric, ref - duration)

    def retention_window(self, triggers: Iterable[Trigger]) -> timedelta:
        """``max(retention floor, longest active CHANGE window)``."""
        window = self._retention_floor
        for trigger in triggers:
            if not trigger.is_active:
                continue
            for hours in trigger.change_windows().values():
                window = max(window, timedelta(hours=hours))
        return window

    def prune(self, triggers: Iterable[Trigger], *, now: Optional[datetime] = None) -> int:
        """Delete readings older than the retention window. Returns the count."""
        current = to_utc(now) if now is not None else self._clock()
        cutoff = current - self.retention_window(triggers)
        deleted = self._repo.delete_older_than(cutoff)
        if deleted:
            logger.info("Pruned %d readings recorded before %s", deleted, cutoff)
        return deleted
