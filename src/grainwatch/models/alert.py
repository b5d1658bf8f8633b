"""Alert domain models.

AlertInfo is the SDK-facing view of an alert row, including the
denormalised site/compound/cell/user/commodity labels the alert list
shows. AlertQuery is the filter accepted by the alert query boundary.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from grainwatch.models.trigger import MetricType, Severity
from grainwatch.timeutil import to_utc


class AlertStatus(str, enum.Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES: frozenset[AlertStatus] = frozenset({
    AlertStatus.OPEN,
    AlertStatus.ACKNOWLEDGED,
    AlertStatus.IN_PROGRESS,
})

TERMINAL_STATUSES: frozenset[AlertStatus] = frozenset({
    AlertStatus.RESOLVED,
    AlertStatus.DISMISSED,
})

# Operator-driven transitions. The engine's own auto-clear path is the only
# other way a status changes (any active status -> RESOLVED).
OPERATOR_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.OPEN: frozenset({
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.IN_PROGRESS,
        AlertStatus.DISMISSED,
    }),
    AlertStatus.ACKNOWLEDGED: frozenset({
        AlertStatus.IN_PROGRESS,
        AlertStatus.DISMISSED,
    }),
    AlertStatus.IN_PROGRESS: frozenset({
        AlertStatus.RESOLVED,
        AlertStatus.DISMISSED,
    }),
    AlertStatus.RESOLVED: frozenset({AlertStatus.OPEN}),
    AlertStatus.DISMISSED: frozenset({AlertStatus.OPEN}),
}


def can_transition(current: AlertStatus, requested: AlertStatus) -> bool:
    """Whether an operator may move an alert from *current* to *requested*."""
    return requested in OPERATOR_TRANSITIONS.get(current, frozenset())


class LabelRef(BaseModel):
    """``{id, name}`` pair used for display labels."""

    id: str
    name: str


class AlertInfo(BaseModel):
    """SDK-facing alert model.

    Not an ORM model -- used for data transfer only.
    """

    id: str
    trigger_id: Optional[str] = None
    organization_id: Optional[str] = None
    site_id: Optional[str] = None
    compound_id: Optional[str] = None
    cell_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    severity: Severity
    status: AlertStatus
    metric: Optional[MetricType] = None
    value: Optional[float] = None
    threshold_value: Optional[float] = None
    unit: Optional[str] = None
    assignee_id: Optional[str] = None
    started_at: datetime
    resolved_at: Optional[datetime] = None
    updated_at: datetime

    site: Optional[LabelRef] = None
    compound: Optional[LabelRef] = None
    cell: Optional[LabelRef] = None
    user: Optional[LabelRef] = None
    commodity: Optional[LabelRef] = None

    @property
    def dedup_key(self) -> tuple[Optional[str], Optional[str]]:
        return (self.trigger_id, self.cell_id)

    def __str__(self) -> str:
        where = self.cell.name if self.cell else (self.cell_id or "-")
        return f"[{self.severity.value}] {self.title} @ {where} ({self.status.value})"


class AlertEventInfo(BaseModel):
    """One entry of an alert's status history."""

    id: int
    alert_id: str
    from_status: Optional[AlertStatus] = None
    to_status: AlertStatus
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime


def parse_statuses(raw: str | None) -> frozenset[AlertStatus] | None:
    """Parse a comma-separated status list once, at the API boundary.

    ``None`` or an empty string means "no status filter".
    Raises ValueError for unknown names.
    """
    if raw is None:
        return None
    names = [part.strip().upper() for part in raw.split(",") if part.strip()]
    if not names:
        return None
    return frozenset(AlertStatus(name) for name in names)


class AlertQuery(BaseModel):
    """Filters for listing alerts. Results are ordered by ``started_at`` desc."""

    model_config = ConfigDict(frozen=True)

    organization_id: Optional[str] = None
    site_id: Optional[str] = None
    compound_id: Optional[str] = None
    cell_id: Optional[str] = None
    user_id: Optional[str] = None
    trigger_id: Optional[str] = None
    statuses: Optional[frozenset[AlertStatus]] = None
    severities: Optional[frozenset[Severity]] = None
    started_after: Optional[datetime] = None
    started_before: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=1000)

    @field_validator("started_after", "started_before")
    @classmethod
    def _normalise_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None

    @field_validator("statuses", "severities", mode="before")
    @classmethod
    def _empty_is_none(cls, v: object) -> object:
        if v is not None and not v:
            return None
        return v
