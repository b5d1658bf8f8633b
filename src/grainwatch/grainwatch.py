"""Grainwatch -- the public SDK entry point.

Ties together storage, the trigger engine, the alert lifecycle and the
notification dispatcher into one object. Users interact with
``Grainwatch.open()``, ``gw.ingest()``, ``gw.list_alerts()``, etc.

Safe to share across threads: every repository call runs in its own
short transaction.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional, Sequence

from grainwatch.alerts.lifecycle import AlertLifecycleManager
from grainwatch.exceptions import TriggerNotFoundError
from grainwatch.models.alert import AlertQuery, AlertStatus
from grainwatch.models.config import GrainwatchConfig
from grainwatch.models.trigger import Trigger, parse_trigger
from grainwatch.notify.dispatcher import NotificationDispatcher
from grainwatch.readings.ingest import ReadingIngestor
from grainwatch.readings.window import ReadingWindowStore
from grainwatch.storage.engine import create_grainwatch_engine, create_session_factory, init_db
from grainwatch.storage.sqlite import (
    SqlAlertRepository,
    SqlReadingRepository,
    SqlTopologyRepository,
    SqlTriggerRepository,
)
from grainwatch.timeutil import Clock, utcnow
from grainwatch.triggers.catalog import TriggerCatalog
from grainwatch.triggers.engine import TriggerEngine
from grainwatch.triggers.scope import ScopeResolver
from grainwatch.workers import EvaluationWorkerPool, PeriodicSweeper

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy import Engine

    from grainwatch.models.alert import AlertEventInfo, AlertInfo
    from grainwatch.models.evaluation import EvaluationResult
    from grainwatch.models.reading import IngestRecord, IngestResult, Reading
    from grainwatch.models.topology import (
        Cell,
        CommodityType,
        Compound,
        Organization,
        Sensor,
        Site,
        User,
    )
    from grainwatch.models.trigger import ActionType
    from grainwatch.notify.channels import NotificationChannel
    from grainwatch.readings.ingest import EmcLookup

logger = logging.getLogger(__name__)


class Grainwatch:
    """Primary entry point for Grainwatch -- grain-storage trigger evaluation.

    Create an instance via :meth:`Grainwatch.open`.

    Example::

        with Grainwatch.open("grain.db", channels={ActionType.EMAIL: LoggingChannel()}) as gw:
            gw.save_trigger(trigger)
            gw.ingest([{"sensorId": "s1", "temperature": 31.0, "recordedAt": now}])
            for alert in gw.list_alerts(statuses={AlertStatus.OPEN}):
                print(alert)
    """

    def __init__(
        self,
        *,
        engine: Engine,
        config: GrainwatchConfig,
        topology: SqlTopologyRepository,
        triggers: SqlTriggerRepository,
        readings: SqlReadingRepository,
        alerts: SqlAlertRepository,
        channels: Optional[Mapping[ActionType, NotificationChannel]] = None,
        emc_lookup: Optional[EmcLookup] = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._engine = engine
        self._config = config
        self._closed = False
        self.topology = topology
        self.triggers = triggers

        self.catalog = TriggerCatalog(triggers, refresh_seconds=config.trigger_refresh_seconds)
        self.resolver = ScopeResolver(topology)
        self.window = ReadingWindowStore(
            readings, retention_days=config.retention_days, clock=clock
        )
        self.lifecycle = AlertLifecycleManager(
            alerts, topology, clock=clock, refire_cooldown=config.refire_cooldown_seconds
        )
        self.dispatcher = NotificationDispatcher(
            channels or {},
            retry=config.dispatch_retry,
            max_workers=config.dispatch_workers,
            default_locale=config.default_locale,
            sleep=sleep,
        )
        self.engine = TriggerEngine(
            self.catalog,
            self.resolver,
            self.window,
            self.lifecycle,
            self.dispatcher,
            topology=topology,
        )
        self.ingestor = ReadingIngestor(topology, self.window, emc_lookup=emc_lookup)
        self._pool: Optional[EvaluationWorkerPool] = None
        self._sweeper: Optional[PeriodicSweeper] = None

    @classmethod
    def open(
        cls,
        path: str | None = None,
        *,
        config: Optional[GrainwatchConfig] = None,
        channels: Optional[Mapping[ActionType, NotificationChannel]] = None,
        emc_lookup: Optional[EmcLookup] = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Grainwatch:
        """Open (or create) a Grainwatch database.

        Args:
            path: SQLite path. Overrides ``config.db_path`` when given.
            config: Process configuration. Defaults to ``GrainwatchConfig()``.
            channels: Notification channel per action type.
            emc_lookup: Derives EMC from temperature and humidity at ingest.
            clock: Source of "now" (naive UTC). Injected for tests.
            sleep: Used between delivery retries. Injected for tests.
        """
        if config is None:
            config = GrainwatchConfig()
        if path is not None:
            config = config.model_copy(update={"db_path": path})

        engine = create_grainwatch_engine(config.db_path, url=config.db_url)
        init_db(engine)
        session_factory = create_session_factory(engine)

        return cls(
            engine=engine,
            config=config,
            topology=SqlTopologyRepository(session_factory),
            triggers=SqlTriggerRepository(session_factory),
            readings=SqlReadingRepository(session_factory),
            alerts=SqlAlertRepository(session_factory),
            channels=channels,
            emc_lookup=emc_lookup,
            clock=clock,
            sleep=sleep,
        )

    @property
    def config(self) -> GrainwatchConfig:
        return self._config

    # ------------------------------------------------------------------
    # Topology seeding
    # ------------------------------------------------------------------

    def add_organization(self, organization: Organization) -> None:
        self.topology.save_organization(organization)
        self.resolver.invalidate()

    def add_site(self, site: Site) -> None:
        self.topology.save_site(site)
        self.resolver.invalidate()

    def add_compound(self, compound: Compound) -> None:
        self.topology.save_compound(compound)
        self.resolver.invalidate()

    def add_commodity_type(self, commodity_type: CommodityType) -> None:
        self.topology.save_commodity_type(commodity_type)
        self.resolver.invalidate()

    def add_cell(self, cell: Cell) -> None:
        self.topology.save_cell(cell)
        self.resolver.invalidate()

    def remove_cell(self, cell_id: str) -> bool:
        removed = self.topology.delete_cell(cell_id)
        self.resolver.invalidate()
        return removed

    def add_sensor(self, sensor: Sensor) -> None:
        self.topology.save_sensor(sensor)

    def add_user(self, user: User) -> None:
        self.topology.save_user(user)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def save_trigger(self, trigger: Trigger | dict[str, Any]) -> Trigger:
        """Validate and store a trigger. Takes effect on the next evaluation.

        Raises pydantic.ValidationError for an invalid dict.
        """
        if not isinstance(trigger, Trigger):
            trigger = parse_trigger(trigger)
        self.triggers.save(trigger)
        self.catalog.invalidate()
        return trigger

    def delete_trigger(self, trigger_id: str) -> None:
        """Delete a trigger. Its alerts remain, detached from it."""
        if not self.triggers.delete(trigger_id):
            raise TriggerNotFoundError(trigger_id)
        self.catalog.invalidate()

    def get_trigger(self, trigger_id: str) -> Trigger:
        trigger = self.triggers.get(trigger_id)
        if trigger is None:
            raise TriggerNotFoundError(trigger_id)
        return trigger

    def list_triggers(self) -> Sequence[Trigger]:
        return self.triggers.list_all()

    # ------------------------------------------------------------------
    # Readings and evaluation
    # ------------------------------------------------------------------

    def ingest(
        self,
        records: Iterable[IngestRecord | dict],
        *,
        notify: bool = True,
        parallel: bool = False,
        strict: bool = False,
    ) -> IngestResult:
        """Record a batch of sensor records and evaluate the new readings.

        Args:
            records: IngestRecord instances or their dict form.
            notify: When False, alerts are still written but no
                notification is dispatched.
            parallel: Evaluate on the worker pool instead of inline.
            strict: Raise UnknownSensorError for a record from an unknown
                sensor instead of dropping it. Nothing is stored then.
        """
        result = self.ingestor.ingest(records, strict=strict)
        evaluations = self.evaluate(result.accepted, notify=notify, parallel=parallel)
        logger.debug(
            "Ingested %d readings (%d duplicates, %d unknown sensors)",
            result.accepted_count, result.duplicates, len(result.unknown_sensors),
        )
        return dataclasses.replace(result, evaluations=evaluations)

    def evaluate(
        self, readings: Iterable[Reading], *, notify: bool = True, parallel: bool = False
    ) -> list[EvaluationResult]:
        """Run the trigger engine for already-recorded readings."""
        if not parallel:
            results: list[EvaluationResult] = []
            for reading in readings:
                results.extend(self.engine.on_reading(reading, notify=notify))
            return results

        if self._pool is None:
            self._pool = EvaluationWorkerPool(self.engine, workers=self._config.evaluation_workers)
        self._pool.submit_many(readings, notify=notify)
        return self._pool.join()

    def sweep(self, *, notify: bool = True) -> list[EvaluationResult]:
        return self.engine.sweep(notify=notify)

    def start_sweeper(self, interval: Optional[float] = None) -> PeriodicSweeper:
        """Start the periodic sweep thread (stopped by ``close()``)."""
        if self._sweeper is None:
            self._sweeper = PeriodicSweeper(
                self.engine, interval=interval or self._config.sweep_interval_seconds
            )
        self._sweeper.start()
        return self._sweeper

    def prune(self, *, now: Optional[datetime] = None) -> int:
        """Delete readings that no active trigger can still look at."""
        return self.window.prune(self.catalog.active(), now=now)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def list_alerts(self, query: Optional[AlertQuery] = None, **filters: Any) -> Sequence[AlertInfo]:
        """List alerts, newest first. Pass an AlertQuery or its fields as kwargs."""
        if query is None:
            query = AlertQuery(**filters)
        elif filters:
            query = query.model_copy(update=filters)
        return self.lifecycle.list(query)

    def get_alert(self, alert_id: str) -> AlertInfo:
        return self.lifecycle.get(alert_id)

    def acknowledge(self, alert_id: str, actor_id: Optional[str] = None) -> AlertInfo:
        return self.lifecycle.acknowledge(alert_id, actor_id)

    def set_status(
        self,
        alert_id: str,
        status: AlertStatus | str,
        actor_id: Optional[str] = None,
        *,
        reason: Optional[str] = None,
    ) -> AlertInfo:
        return self.lifecycle.transition(alert_id, AlertStatus(status), actor_id, reason=reason)

    def assign(
        self, alert_id: str, user_id: Optional[str], actor_id: Optional[str] = None
    ) -> AlertInfo:
        return self.lifecycle.assign(alert_id, user_id, actor_id)

    def history(self, alert_id: str) -> Sequence[AlertEventInfo]:
        return self.lifecycle.history(alert_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued notifications. Returns False on timeout."""
        return self.dispatcher.drain(timeout)

    def close(self) -> None:
        """Stop background work, flush notifications and dispose the engine."""
        if self._closed:
            return
        self._closed = True
        if self._sweeper is not None:
            self._sweeper.stop()
        if self._pool is not None:
            self._pool.shutdown()
        self.dispatcher.close()
        self._engine.dispose()

    def __enter__(self) -> Grainwatch:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Grainwatch db={self._config.db_url or self._config.db_path!r} {state}>"
