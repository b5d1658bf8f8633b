"""Abstract repository interfaces for Grainwatch storage.

Defines ABC interfaces for all database operations. No SQLAlchemy
imports here -- pure abstract contracts.

Concrete implementations are in sqlite.py. Every component receives the
repositories it needs through its constructor, so tests can substitute
in-memory doubles.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from datetime import datetime

    from grainwatch.models.alert import AlertEventInfo, AlertInfo, AlertQuery, AlertStatus
    from grainwatch.models.reading import Reading
    from grainwatch.models.topology import (
        Cell,
        CellLocation,
        CommodityType,
        Compound,
        Organization,
        Sensor,
        Site,
        User,
    )
    from grainwatch.models.trigger import MetricType, Trigger


class TopologyRepository(ABC):
    """Abstract interface for facility topology lookups.

    The ``save_*`` methods are upserts used for seeding; topology CRUD
    proper belongs to an external service.
    """

    @abstractmethod
    def save_organization(self, organization: Organization) -> None: ...

    @abstractmethod
    def save_site(self, site: Site) -> None: ...

    @abstractmethod
    def save_compound(self, compound: Compound) -> None: ...

    @abstractmethod
    def save_commodity_type(self, commodity_type: CommodityType) -> None: ...

    @abstractmethod
    def save_cell(self, cell: Cell) -> None: ...

    @abstractmethod
    def save_sensor(self, sensor: Sensor) -> None: ...

    @abstractmethod
    def save_user(self, user: User) -> None: ...

    @abstractmethod
    def delete_cell(self, cell_id: str) -> bool:
        """Delete a cell. Returns False if it did not exist."""
        ...

    @abstractmethod
    def all_cell_ids(self) -> frozenset[str]: ...

    @abstractmethod
    def cell_ids_for_organization(self, organization_id: str) -> frozenset[str]: ...

    @abstractmethod
    def cell_ids_for_site(self, site_id: str) -> frozenset[str]: ...

    @abstractmethod
    def cell_ids_for_compound(self, compound_id: str) -> frozenset[str]: ...

    @abstractmethod
    def cell_ids_for_commodity_type(self, commodity_type_id: str) -> frozenset[str]: ...

    @abstractmethod
    def cell_exists(self, cell_id: str) -> bool: ...

    @abstractmethod
    def locate_cell(self, cell_id: str) -> CellLocation | None:
        """Resolve a cell with every ancestor id and display name."""
        ...

    @abstractmethod
    def find_sensor(self, identifier: str) -> Sensor | None:
        """Find a sensor by id, falling back to its MAC id."""
        ...

    @abstractmethod
    def get_user(self, user_id: str) -> User | None: ...


class TriggerRepository(ABC):
    """Abstract interface for trigger storage.

    ``list_active_raw`` returns undecoded payloads so a single malformed
    row can be skipped without hiding the rest of the catalog.
    """

    @abstractmethod
    def save(self, trigger: Trigger) -> None:
        """Insert or replace a trigger."""
        ...

    @abstractmethod
    def get(self, trigger_id: str) -> Trigger | None: ...

    @abstractmethod
    def delete(self, trigger_id: str) -> bool:
        """Delete a trigger. Alerts keep their history with trigger_id=NULL."""
        ...

    @abstractmethod
    def list_all(self) -> Sequence[Trigger]: ...

    @abstractmethod
    def list_active_raw(self) -> Sequence[dict]:
        """All active triggers as plain dicts, ready for validation."""
        ...


class ReadingRepository(ABC):
    """Abstract interface for the append-only reading log."""

    @abstractmethod
    def insert_if_absent(self, reading: Reading) -> bool:
        """Append a reading. Returns False if (sensor, metric, time) exists."""
        ...

    @abstractmethod
    def latest(self, cell_id: str, metric: MetricType) -> Reading | None: ...

    @abstractmethod
    def latest_at_or_before(
        self, cell_id: str, metric: MetricType, cutoff: datetime
    ) -> Reading | None:
        """Most recent reading with ``recorded_at <= cutoff``."""
        ...

    @abstractmethod
    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete readings recorded strictly before *cutoff*. Returns count."""
        ...


class AlertRepository(ABC):
    """Abstract interface for alert storage."""

    @abstractmethod
    def get(self, alert_id: str) -> AlertInfo | None: ...

    @abstractmethod
    def find_active(self, trigger_id: str, cell_id: str) -> AlertInfo | None:
        """The unresolved alert holding the dedup key, if any."""
        ...

    @abstractmethod
    def latest_for_key(self, trigger_id: str, cell_id: str) -> AlertInfo | None:
        """Most recently started alert for the dedup key, any status."""
        ...

    @abstractmethod
    def insert(self, alert: AlertInfo, *, reason: str | None = None) -> AlertInfo:
        """Insert a new alert and its first history event.

        Raises DuplicateOpenAlertError if another unresolved alert already
        holds the same dedup key.
        """
        ...

    @abstractmethod
    def compare_and_set_status(
        self,
        alert_id: str,
        expected: AlertStatus,
        new_status: AlertStatus,
        *,
        now: datetime,
        resolved_at: datetime | None,
        actor_id: str | None = None,
        reason: str | None = None,
    ) -> AlertInfo | None:
        """Move an alert to *new_status* only if it is still in *expected*.

        Writes the history event in the same transaction. Returns the
        updated alert, or None if the status had changed underneath.
        Raises DuplicateOpenAlertError when reopening would collide with
        another unresolved alert.
        """
        ...

    @abstractmethod
    def set_assignee(
        self, alert_id: str, user_id: str | None, *, now: datetime, actor_id: str | None = None
    ) -> AlertInfo | None: ...

    @abstractmethod
    def query(self, query: AlertQuery) -> Sequence[AlertInfo]: ...

    @abstractmethod
    def history(self, alert_id: str) -> Sequence[AlertEventInfo]: ...
