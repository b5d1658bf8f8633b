"""AlertLifecycleManager -- create, deduplicate and transition alerts.

Owns the alert state machine. Two kinds of writer touch an alert:

- the trigger engine, through ``open_or_retain`` and ``auto_clear``;
- operators, through ``transition`` / ``acknowledge`` / ``assign``.

At most one unresolved alert exists per (trigger_id, cell_id). Inside one
process a per-key lock serialises check-then-insert; across processes the
partial unique index on the alerts table has the final word, and the loser
of that race reports the winner's alert as retained.

Every status write is a compare-and-set on the previous status, so an
operator transition racing an auto-clear never overwrites it blindly.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional, Sequence

from grainwatch.exceptions import (
    AlertNotFoundError,
    DuplicateOpenAlertError,
    InvalidTransitionError,
    UserNotFoundError,
)
from grainwatch.models.alert import (
    AlertEventInfo,
    AlertInfo,
    AlertQuery,
    AlertStatus,
    LabelRef,
    can_transition,
)
from grainwatch.models.evaluation import OpenOutcome
from grainwatch.models.trigger import MetricType
from grainwatch.timeutil import Clock, utcnow

if TYPE_CHECKING:
    from grainwatch.models.evaluation import FiringContext
    from grainwatch.models.topology import CellLocation
    from grainwatch.models.trigger import Trigger
    from grainwatch.storage.repositories import AlertRepository, TopologyRepository

logger = logging.getLogger(__name__)

_AUTO_CLEAR_REASON = "condition no longer holds"

# open_or_retain for one (trigger, cell) key always takes the same stripe
_LOCK_STRIPES = 64


class AlertLifecycleManager:
    """State machine and dedup rules for alerts."""

    def __init__(
        self,
        alerts: AlertRepository,
        topology: TopologyRepository,
        *,
        clock: Clock = utcnow,
        refire_cooldown: float = 0.0,
    ) -> None:
        self._alerts = alerts
        self._topology = topology
        self._clock = clock
        self._refire_cooldown = timedelta(seconds=refire_cooldown)
        self._key_locks = tuple(threading.Lock() for _ in range(_LOCK_STRIPES))

    # ------------------------------------------------------------------
    # Engine side
    # ------------------------------------------------------------------

    def open_or_retain(
        self, trigger: Trigger, cell_id: str, context: FiringContext
    ) -> OpenOutcome:
        """Open an alert for (trigger, cell) unless one is already unresolved.

        Returns an OpenOutcome whose ``newly_opened`` is True only when this
        call inserted the alert.
        """
        with self._key_lock(trigger.id, cell_id):
            existing = self._alerts.find_active(trigger.id, cell_id)
            if existing is not None:
                logger.debug("Alert %s retained for %s/%s", existing.id, trigger.id, cell_id)
                return OpenOutcome(alert=existing, newly_opened=False)

            now = self._clock()
            if self._in_cooldown(trigger.id, cell_id, now):
                logger.debug("Re-fire of %s on %s suppressed by cooldown", trigger.id, cell_id)
                return OpenOutcome(alert=None, newly_opened=False, suppressed=True)

            alert = self._build_alert(trigger, cell_id, context, now)
            try:
                created = self._alerts.insert(alert, reason="trigger fired")
            except DuplicateOpenAlertError:
                winner = self._alerts.find_active(trigger.id, cell_id)
                logger.debug("Lost open race for %s/%s; retaining", trigger.id, cell_id)
                return OpenOutcome(alert=winner, newly_opened=False)

        logger.info(
            "Opened alert %s (%s) for trigger %s on cell %s",
            created.id, created.severity.value, trigger.id, cell_id,
        )
        return OpenOutcome(alert=created, newly_opened=True)

    def auto_clear(self, trigger_id: str, cell_id: str) -> Optional[AlertInfo]:
        """Resolve the unresolved alert for the key, if any.

        DISMISSED and RESOLVED alerts are never touched. Returns the
        resolved alert, or None when there was nothing to clear.
        """
        while True:
            active = self._alerts.find_active(trigger_id, cell_id)
            if active is None:
                return None
            now = self._clock()
            updated = self._alerts.compare_and_set_status(
                active.id,
                active.status,
                AlertStatus.RESOLVED,
                now=now,
                resolved_at=now,
                reason=_AUTO_CLEAR_REASON,
            )
            if updated is not None:
                logger.info("Auto-resolved alert %s", updated.id)
                return updated
            # status moved underneath us; look again

    # ------------------------------------------------------------------
    # Operator side
    # ------------------------------------------------------------------

    def transition(
        self,
        alert_id: str,
        new_status: AlertStatus,
        actor_id: Optional[str] = None,
        *,
        reason: Optional[str] = None,
    ) -> AlertInfo:
        """Apply an operator transition.

        Raises:
            AlertNotFoundError: Unknown alert id.
            InvalidTransitionError: Edge not in the operator table. Nothing
                is written.
            DuplicateOpenAlertError: Reopening while another unresolved
                alert holds the same key.
        """
        new_status = AlertStatus(new_status)
        while True:
            current = self.get(alert_id)
            if not can_transition(current.status, new_status):
                raise InvalidTransitionError(alert_id, current.status.value, new_status.value)

            now = self._clock()
            if new_status is AlertStatus.RESOLVED:
                resolved_at: Optional[datetime] = now
            elif new_status is AlertStatus.OPEN:
                resolved_at = None
            else:
                resolved_at = current.resolved_at

            updated = self._alerts.compare_and_set_status(
                alert_id,
                current.status,
                new_status,
                now=now,
                resolved_at=resolved_at,
                actor_id=actor_id,
                reason=reason,
            )
            if updated is not None:
                logger.info(
                    "Alert %s: %s -> %s (actor=%s)",
                    alert_id, current.status.value, new_status.value, actor_id,
                )
                return updated
            logger.debug("Alert %s changed during transition; re-validating", alert_id)

    def acknowledge(self, alert_id: str, actor_id: Optional[str] = None) -> AlertInfo:
        return self.transition(alert_id, AlertStatus.ACKNOWLEDGED, actor_id)

    def assign(
        self, alert_id: str, user_id: Optional[str], actor_id: Optional[str] = None
    ) -> AlertInfo:
        """Set (or clear, with None) the alert's assignee."""
        if user_id is not None and self._topology.get_user(user_id) is None:
            raise UserNotFoundError(user_id)
        updated = self._alerts.set_assignee(alert_id, user_id, now=self._clock(), actor_id=actor_id)
        if updated is None:
            raise AlertNotFoundError(alert_id)
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, alert_id: str) -> AlertInfo:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def history(self, alert_id: str) -> Sequence[AlertEventInfo]:
        self.get(alert_id)
        return self._alerts.history(alert_id)

    def list(self, query: Optional[AlertQuery] = None) -> Sequence[AlertInfo]:
        return self._alerts.query(query or AlertQuery())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _key_lock(self, trigger_id: str, cell_id: str) -> threading.Lock:
        return self._key_locks[hash((trigger_id, cell_id)) % _LOCK_STRIPES]

    def _in_cooldown(self, trigger_id: str, cell_id: str, now: datetime) -> bool:
        if not self._refire_cooldown:
            return False
        last = self._alerts.latest_for_key(trigger_id, cell_id)
        if last is None or not last.status.is_terminal:
            return False
        return now - last.updated_at < self._refire_cooldown

    def _build_alert(
        self, trigger: Trigger, cell_id: str, context: FiringContext, now: datetime
    ) -> AlertInfo:
        location = self._topology.locate_cell(cell_id)
        return AlertInfo(
            id=uuid.uuid4().hex,
            trigger_id=trigger.id,
            organization_id=location.organization_id if location else trigger.organization_id,
            site_id=location.site_id if location else None,
            compound_id=location.compound_id if location else None,
            cell_id=cell_id,
            title=trigger.name,
            description=trigger.description,
            details={
                "matched_conditions": list(context.matched_conditions),
                "condition_logic": trigger.condition_logic.value,
            },
            severity=trigger.severity,
            status=AlertStatus.OPEN,
            metric=MetricType(context.metric) if context.metric else None,
            value=context.value,
            threshold_value=context.threshold,
            unit=context.unit or None,
            started_at=now,
            updated_at=now,
            **_labels(location),
        )


def _labels(location: Optional[CellLocation]) -> dict[str, Optional[LabelRef]]:
    if location is None:
        return {}
    commodity = None
    if location.commodity_type_id and location.commodity_type_name:
        commodity = LabelRef(id=location.commodity_type_id, name=location.commodity_type_name)
    return {
        "site": LabelRef(id=location.site_id, name=location.site_name),
        "compound": LabelRef(id=location.compound_id, name=location.compound_name),
        "cell": LabelRef(id=location.cell_id, name=location.cell_name),
        "commodity": commodity,
    }
