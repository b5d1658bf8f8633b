"""TriggerCatalog -- cached view of the active triggers.

Triggers are managed by external CRUD, so the catalog reloads from the
repository after ``invalidate()`` or once ``refresh_seconds`` have passed.
A stored trigger that no longer validates is skipped with a logged error;
the rest of the catalog stays usable.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable

from grainwatch.exceptions import TriggerConfigError
from grainwatch.storage.sqlite import decode_trigger

if TYPE_CHECKING:
    from grainwatch.models.trigger import Trigger
    from grainwatch.storage.repositories import TriggerRepository

logger = logging.getLogger(__name__)


class TriggerCatalog:
    """Thread-safe cache of active, valid triggers."""

    def __init__(
        self,
        repo: TriggerRepository,
        *,
        refresh_seconds: float = 30.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repo = repo
        self._refresh_seconds = refresh_seconds
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._triggers: list[Trigger] | None = None
        self._loaded_at: float = 0.0

    def active(self) -> list[Trigger]:
        """Active triggers, reloading when stale."""
        with self._lock:
            if self._triggers is None or self._is_stale():
                self._triggers = self._load()
                self._loaded_at = self._monotonic()
            return list(self._triggers)

    def get(self, trigger_id: str) -> Trigger | None:
        for trigger in self.active():
            if trigger.id == trigger_id:
                return trigger
        return None

    def invalidate(self) -> None:
        """Force a reload on next access."""
        with self._lock:
            self._triggers = None

    def _is_stale(self) -> bool:
        if self._refresh_seconds <= 0:
            return True
        return self._monotonic() - self._loaded_at >= self._refresh_seconds

    def _load(self) -> list[Trigger]:
        triggers: list[Trigger] = []
        for raw in self._repo.list_active_raw():
            try:
                triggers.append(decode_trigger(raw))
            except TriggerConfigError as exc:
                logger.error("Skipping trigger %s: %s", exc.trigger_id, exc.reason)
        logger.debug("Loaded %d active triggers", len(triggers))
        return triggers
