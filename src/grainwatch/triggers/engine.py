"""TriggerEngine -- evaluate triggers for a cell and drive the alert lifecycle.

For each reading the engine:

1. picks the active triggers whose scope covers the reading's cell and that
   have a condition on the reading's metric;
2. evaluates every condition of each trigger against the cell's readings;
3. combines the results with the trigger's AND/OR logic;
4. opens (or retains) an alert when true and dispatches notifications for
   newly opened alerts, or auto-clears the alert when false.

A failure while evaluating one trigger is logged and reported as an
``error`` result; the remaining triggers still run.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from grainwatch.models.evaluation import EvaluationResult, FiringContext
from grainwatch.models.trigger import ChangeCondition, ThresholdCondition, metric_unit
from grainwatch.triggers.conditions import combine, evaluate_condition

if TYPE_CHECKING:
    from grainwatch.alerts.lifecycle import AlertLifecycleManager
    from grainwatch.models.alert import AlertInfo
    from grainwatch.models.reading import Reading
    from grainwatch.models.trigger import Condition, MetricType, Trigger
    from grainwatch.notify.dispatcher import NotificationDispatcher
    from grainwatch.readings.window import ReadingWindowStore
    from grainwatch.storage.repositories import TopologyRepository
    from grainwatch.triggers.catalog import TriggerCatalog
    from grainwatch.triggers.scope import ScopeResolver

logger = logging.getLogger(__name__)


class TriggerEngine:
    """Evaluates the trigger catalog against incoming readings.

    Args:
        catalog: Source of active triggers.
        resolver: Maps trigger scopes to cell ids.
        window: Latest and historical readings.
        lifecycle: Opens, retains and clears alerts.
        dispatcher: Receives newly opened alerts. ``None`` disables
            notifications entirely.
        topology: Used to fill location names into notification variables.
    """

    def __init__(
        self,
        catalog: TriggerCatalog,
        resolver: ScopeResolver,
        window: ReadingWindowStore,
        lifecycle: AlertLifecycleManager,
        dispatcher: Optional[NotificationDispatcher] = None,
        *,
        topology: Optional[TopologyRepository] = None,
    ) -> None:
        self._catalog = catalog
        self._resolver = resolver
        self._window = window
        self._lifecycle = lifecycle
        self._dispatcher = dispatcher
        self._topology = topology

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def on_reading(self, reading: Reading, *, notify: bool = True) -> list[EvaluationResult]:
        """Evaluate every trigger affected by *reading*.

        The reading is expected to be recorded in the window store already.
        """
        return self.evaluate_cell(reading.cell_id, metric=reading.metric, notify=notify)

    def evaluate_cell(
        self,
        cell_id: str,
        *,
        metric: Optional[MetricType] = None,
        notify: bool = True,
    ) -> list[EvaluationResult]:
        """Evaluate triggers covering *cell_id*, optionally only those on *metric*."""
        results: list[EvaluationResult] = []
        for trigger in self._catalog.active():
            if metric is not None and metric not in trigger.metrics:
                continue
            try:
                covered = self._resolver.covers(trigger, cell_id)
            except Exception as exc:
                results.append(self._error(trigger, cell_id, exc))
                continue
            if covered:
                results.append(self._evaluate_guarded(trigger, cell_id, notify, metric))
        return results

    def sweep(self, *, notify: bool = True) -> list[EvaluationResult]:
        """Evaluate every active trigger against every cell in its scope.

        Evaluation is anchored on each cell's latest reading, so with no new
        data a sweep repeats the last per-reading result. It backstops
        trigger and topology changes that happened since then, and
        readings whose evaluation was missed.
        """
        results: list[EvaluationResult] = []
        for trigger in self._catalog.active():
            try:
                cells = sorted(self._resolver.resolve(trigger))
            except Exception as exc:
                results.append(self._error(trigger, "*", exc))
                continue
            for cell_id in cells:
                results.append(self._evaluate_guarded(trigger, cell_id, notify, None))
        logger.debug("Sweep evaluated %d trigger/cell pairs", len(results))
        return results

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _evaluate_guarded(
        self,
        trigger: Trigger,
        cell_id: str,
        notify: bool,
        focus: Optional[MetricType],
    ) -> EvaluationResult:
        try:
            return self._evaluate(trigger, cell_id, notify, focus)
        except Exception as exc:
            return self._error(trigger, cell_id, exc)

    def _error(self, trigger: Trigger, cell_id: str, exc: Exception) -> EvaluationResult:
        logger.error(
            "Trigger %s on cell %s raised %s: %s",
            trigger.id, cell_id, type(exc).__name__, exc,
        )
        return EvaluationResult(
            trigger_id=trigger.id,
            cell_id=cell_id,
            fired=False,
            outcome="error",
            error=str(exc),
        )

    def _evaluate(
        self,
        trigger: Trigger,
        cell_id: str,
        notify: bool,
        focus: Optional[MetricType],
    ) -> EvaluationResult:
        latest = {m: self._window.latest(cell_id, m) for m in trigger.metrics}

        matched: list[Condition] = []
        failed: list[Condition] = []
        results: list[bool] = []
        for condition in trigger.conditions:
            current = latest[condition.metric]
            historical = None
            if isinstance(condition, ChangeCondition) and current is not None:
                historical = self._window.as_of(
                    cell_id,
                    condition.metric,
                    timedelta(hours=condition.time_window_hours),
                    reference=current.recorded_at,
                )
            ok = evaluate_condition(condition, current, historical)
            results.append(ok)
            (matched if ok else failed).append(condition)

        fired = combine(trigger.condition_logic, results)
        matched_ids = tuple(c.id for c in matched)
        failed_ids = tuple(c.id for c in failed)

        if not fired:
            cleared = self._lifecycle.auto_clear(trigger.id, cell_id)
            return EvaluationResult(
                trigger_id=trigger.id,
                cell_id=cell_id,
                fired=False,
                outcome="cleared" if cleared is not None else "idle",
                matched_conditions=matched_ids,
                failed_conditions=failed_ids,
                alert_id=cleared.id if cleared is not None else None,
            )

        context = self._firing_context(trigger, cell_id, matched, latest, focus)
        opened = self._lifecycle.open_or_retain(trigger, cell_id, context)
        if opened.newly_opened:
            outcome = "opened"
            if notify and self._dispatcher is not None and opened.alert is not None:
                self._dispatch(self._dispatcher, trigger, opened.alert, context)
        elif opened.suppressed:
            outcome = "suppressed"
        else:
            outcome = "retained"

        return EvaluationResult(
            trigger_id=trigger.id,
            cell_id=cell_id,
            fired=True,
            outcome=outcome,
            matched_conditions=matched_ids,
            failed_conditions=failed_ids,
            alert_id=opened.alert.id if opened.alert is not None else None,
        )

    def _dispatch(
        self, dispatcher: NotificationDispatcher, trigger: Trigger, alert: AlertInfo, context: FiringContext
    ) -> None:
        try:
            dispatcher.dispatch(trigger, alert, context)
        except Exception:
            # alert stays committed
            logger.exception("Dispatch for alert %s failed", alert.id)

    def _firing_context(
        self,
        trigger: Trigger,
        cell_id: str,
        matched: list[Condition],
        latest: dict,
        focus: Optional[MetricType],
    ) -> FiringContext:
        primary = next((c for c in matched if c.metric == focus), matched[0])
        reading = latest.get(primary.metric)
        if isinstance(primary, ThresholdCondition):
            threshold = primary.value
        else:
            threshold = primary.change_amount

        location = self._topology.locate_cell(cell_id) if self._topology else None
        return FiringContext(
            trigger_id=trigger.id,
            trigger_name=trigger.name,
            severity=trigger.severity.value,
            cell_id=cell_id,
            cell_name=location.cell_name if location else cell_id,
            compound_name=location.compound_name if location else "",
            site_name=location.site_name if location else "",
            commodity_type=(location.commodity_type_name or "") if location else "",
            metric=primary.metric.value,
            value=reading.value if reading is not None else None,
            unit=metric_unit(primary.metric),
            threshold=threshold,
            timestamp=reading.recorded_at.isoformat() if reading is not None else "",
            matched_conditions=tuple(c.id for c in matched),
        )
