"""Result records produced by the trigger evaluation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Optional

if TYPE_CHECKING:
    from grainwatch.models.alert import AlertInfo

Outcome = Literal["opened", "retained", "suppressed", "cleared", "idle", "error"]


@dataclass(frozen=True)
class EvaluationResult:
    """Result of evaluating one trigger against one cell.

    Immutable: once evaluation completes, the result is final.
    """

    trigger_id: str
    cell_id: str
    fired: bool
    outcome: Outcome = "idle"
    matched_conditions: tuple[str, ...] = ()
    failed_conditions: tuple[str, ...] = ()
    alert_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class OpenOutcome:
    """What ``open_or_retain`` did for a dedup key.

    ``newly_opened`` is True exactly once per firing; the caller dispatches
    notifications only then.
    """

    alert: Optional[AlertInfo]
    newly_opened: bool
    suppressed: bool = False


@dataclass(frozen=True)
class FiringContext:
    """Everything a notification template can refer to."""

    trigger_id: str
    trigger_name: str
    severity: str
    cell_id: str
    cell_name: str = ""
    compound_name: str = ""
    site_name: str = ""
    commodity_type: str = ""
    metric: str = ""
    value: Optional[float] = None
    unit: str = ""
    threshold: Optional[float] = None
    timestamp: str = ""
    matched_conditions: tuple[str, ...] = field(default_factory=tuple)

    def variables(self) -> dict[str, str]:
        """Template variables, every value already a string."""
        return {
            "site_name": self.site_name,
            "compound_name": self.compound_name,
            "cell_name": self.cell_name,
            "commodity_type": self.commodity_type,
            "metric": self.metric,
            "value": _fmt(self.value),
            "unit": self.unit,
            "threshold": _fmt(self.threshold),
            "severity": self.severity,
            "timestamp": self.timestamp,
            "trigger_name": self.trigger_name,
        }


def _fmt(value: Optional[float]) -> str:
    if value is None:
        return ""
    return f"{value:g}"
