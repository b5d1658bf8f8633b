"""Tests for the SQL repositories.

Covers:
- Topology lookups (scope cell sets, locate_cell, sensor by MAC)
- Trigger storage, delete detaching alerts, malformed rows
- Reading dedup and as-of lookups
- Alert insert dedup via the partial unique index
- Compare-and-set status writes and history
- Alert query filters and ordering
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError

from grainwatch.exceptions import DuplicateOpenAlertError, TriggerConfigError
from grainwatch.models.alert import AlertInfo, AlertQuery, AlertStatus
from grainwatch.models.trigger import MetricType, Severity
from grainwatch.storage.engine import (
    SCHEMA_VERSION,
    create_grainwatch_engine,
    init_db,
    session_scope,
)
from grainwatch.storage.schema import GrainwatchMetaRow, TriggerRow
from grainwatch.storage.sqlite import decode_trigger

from tests.conftest import T0, make_reading, make_trigger


def _alert(trigger_id: str, cell_id: str = "cell-1", *, started=T0, **overrides) -> AlertInfo:
    data = dict(
        id=f"a-{trigger_id}-{cell_id}-{started:%H%M%S}",
        trigger_id=trigger_id,
        organization_id="org-1",
        site_id="site-1",
        cell_id=cell_id,
        title="Hot bin",
        severity=Severity.HIGH,
        status=AlertStatus.OPEN,
        started_at=started,
        updated_at=started,
    )
    data.update(overrides)
    return AlertInfo(**data)


# ---------------------------------------------------------------------------
# Topology
# ---------------------------------------------------------------------------


class TestTopology:
    def test_cell_sets(self, seeded):
        assert seeded.all_cell_ids() == {"cell-1", "cell-2", "cell-3", "cell-9"}
        assert seeded.cell_ids_for_organization("org-1") == {"cell-1", "cell-2", "cell-3"}
        assert seeded.cell_ids_for_site("site-1") == {"cell-1", "cell-2", "cell-3"}
        assert seeded.cell_ids_for_compound("cmp-a") == {"cell-1", "cell-2"}
        assert seeded.cell_ids_for_commodity_type("wheat") == {"cell-1", "cell-3"}

    def test_unknown_ids_are_empty(self, seeded):
        assert seeded.cell_ids_for_site("nope") == frozenset()
        assert not seeded.cell_exists("nope")

    def test_locate_cell(self, seeded):
        loc = seeded.locate_cell("cell-1")
        assert loc is not None
        assert (loc.cell_name, loc.compound_name, loc.site_name) == ("Bin 1", "Compound A", "North Site")
        assert loc.organization_id == "org-1"
        assert loc.commodity_type_name == "Wheat"

    def test_locate_cell_without_commodity(self, seeded):
        loc = seeded.locate_cell("cell-9")
        assert loc is not None
        assert loc.commodity_type_id is None
        assert loc.commodity_type_name is None

    def test_find_sensor_by_id_or_mac(self, seeded):
        assert seeded.find_sensor("sen-1").cell_id == "cell-1"
        assert seeded.find_sensor("AA:BB:CC:00:00:01").id == "sen-1"
        assert seeded.find_sensor("missing") is None

    def test_delete_cell(self, seeded):
        assert seeded.delete_cell("cell-3") is True
        assert seeded.delete_cell("cell-3") is False
        assert seeded.cell_ids_for_compound("cmp-b") == frozenset()

    def test_get_user(self, seeded):
        assert seeded.get_user("user-1").locale == "fr"
        assert seeded.get_user("user-x") is None


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TestTriggers:
    def test_save_and_get(self, trigger_repo):
        trigger = make_trigger()
        trigger_repo.save(trigger)
        assert trigger_repo.get(trigger.id) == trigger

    def test_save_replaces(self, trigger_repo):
        trigger = make_trigger()
        trigger_repo.save(trigger)
        trigger_repo.save(trigger.model_copy(update={"name": "Renamed"}))
        assert trigger_repo.get(trigger.id).name == "Renamed"
        assert len(trigger_repo.list_all()) == 1

    def test_list_active_raw_skips_inactive(self, trigger_repo):
        active = make_trigger()
        inactive = make_trigger(is_active=False)
        trigger_repo.save(active)
        trigger_repo.save(inactive)
        assert [raw["id"] for raw in trigger_repo.list_active_raw()] == [active.id]

    def test_delete_detaches_alerts(self, seeded, trigger_repo, alert_repo):
        trigger = make_trigger()
        trigger_repo.save(trigger)
        alert_repo.insert(_alert(trigger.id))

        assert trigger_repo.delete(trigger.id) is True
        assert trigger_repo.delete(trigger.id) is False

        [alert] = alert_repo.query(AlertQuery())
        assert alert.trigger_id is None
        assert alert_repo.history(alert.id)

    def test_malformed_row_raises_config_error(self, trigger_repo, session_factory):
        trigger = make_trigger()
        trigger_repo.save(trigger)
        with session_scope(session_factory) as session:
            session.execute(
                update(TriggerRow).where(TriggerRow.id == trigger.id).values(conditions_json=[])
            )
        [raw] = trigger_repo.list_active_raw()
        with pytest.raises(TriggerConfigError) as info:
            decode_trigger(raw)
        assert info.value.trigger_id == trigger.id


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------


class TestReadings:
    def test_insert_is_idempotent(self, reading_repo):
        assert reading_repo.insert_if_absent(make_reading(25)) is True
        assert reading_repo.insert_if_absent(make_reading(26)) is False
        assert reading_repo.latest("cell-1", MetricType.TEMPERATURE).value == 25

    def test_metric_is_part_of_identity(self, reading_repo):
        assert reading_repo.insert_if_absent(make_reading(25)) is True
        assert reading_repo.insert_if_absent(make_reading(60, metric=MetricType.HUMIDITY)) is True

    def test_latest_is_newest_recorded(self, reading_repo):
        reading_repo.insert_if_absent(make_reading(30, at=T0))
        reading_repo.insert_if_absent(make_reading(20, at=T0 - timedelta(hours=1)))
        assert reading_repo.latest("cell-1", MetricType.TEMPERATURE).value == 30
        assert reading_repo.latest("cell-2", MetricType.TEMPERATURE) is None

    def test_latest_at_or_before(self, reading_repo):
        for hours, value in [(72, 20), (48, 22), (1, 27)]:
            reading_repo.insert_if_absent(make_reading(value, at=T0 - timedelta(hours=hours)))
        found = reading_repo.latest_at_or_before("cell-1", MetricType.TEMPERATURE, T0 - timedelta(hours=48))
        assert found.value == 22
        found = reading_repo.latest_at_or_before("cell-1", MetricType.TEMPERATURE, T0 - timedelta(hours=47))
        assert found.value == 22
        assert reading_repo.latest_at_or_before("cell-1", MetricType.TEMPERATURE, T0 - timedelta(days=4)) is None

    def test_storage_fault_is_not_a_duplicate(self, reading_repo):
        with pytest.raises(IntegrityError):
            reading_repo.insert_if_absent(make_reading(float("nan")))
        assert reading_repo.latest("cell-1", MetricType.TEMPERATURE) is None
        assert reading_repo.insert_if_absent(make_reading(25)) is True

    def test_delete_older_than(self, reading_repo):
        reading_repo.insert_if_absent(make_reading(1, at=T0 - timedelta(days=10)))
        reading_repo.insert_if_absent(make_reading(2, at=T0 - timedelta(days=5)))
        reading_repo.insert_if_absent(make_reading(3, at=T0))
        assert reading_repo.delete_older_than(T0 - timedelta(days=5)) == 1
        assert reading_repo.delete_older_than(T0 - timedelta(days=5)) == 0


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


@pytest.fixture
def trigger(seeded, trigger_repo):
    t = make_trigger()
    trigger_repo.save(t)
    return t


class TestAlertInsert:
    def test_insert_writes_first_event(self, trigger, alert_repo):
        alert = alert_repo.insert(_alert(trigger.id), reason="trigger fired")
        [event] = alert_repo.history(alert.id)
        assert event.from_status is None
        assert event.to_status is AlertStatus.OPEN
        assert event.reason == "trigger fired"

    def test_second_active_alert_rejected(self, trigger, alert_repo):
        alert_repo.insert(_alert(trigger.id))
        with pytest.raises(DuplicateOpenAlertError):
            alert_repo.insert(_alert(trigger.id, started=T0 + timedelta(minutes=1)))

    def test_other_cell_is_independent(self, trigger, alert_repo):
        alert_repo.insert(_alert(trigger.id, "cell-1"))
        alert_repo.insert(_alert(trigger.id, "cell-2"))
        assert len(alert_repo.query(AlertQuery())) == 2

    def test_new_alert_allowed_after_terminal(self, trigger, alert_repo):
        first = alert_repo.insert(_alert(trigger.id))
        alert_repo.compare_and_set_status(
            first.id, AlertStatus.OPEN, AlertStatus.DISMISSED, now=T0, resolved_at=None
        )
        second = alert_repo.insert(_alert(trigger.id, started=T0 + timedelta(minutes=1)))
        assert alert_repo.find_active(trigger.id, "cell-1").id == second.id
        assert alert_repo.latest_for_key(trigger.id, "cell-1").id == second.id


class TestCompareAndSet:
    def test_moves_from_expected(self, trigger, alert_repo):
        alert = alert_repo.insert(_alert(trigger.id))
        later = T0 + timedelta(minutes=5)
        updated = alert_repo.compare_and_set_status(
            alert.id, AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED,
            now=later, resolved_at=None, actor_id="user-1",
        )
        assert updated.status is AlertStatus.ACKNOWLEDGED
        assert updated.updated_at == later
        events = alert_repo.history(alert.id)
        assert [(e.from_status, e.to_status) for e in events] == [
            (None, AlertStatus.OPEN),
            (AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED),
        ]
        assert events[-1].actor_id == "user-1"

    def test_stale_expectation_writes_nothing(self, trigger, alert_repo):
        alert = alert_repo.insert(_alert(trigger.id))
        result = alert_repo.compare_and_set_status(
            alert.id, AlertStatus.ACKNOWLEDGED, AlertStatus.IN_PROGRESS, now=T0, resolved_at=None
        )
        assert result is None
        assert alert_repo.get(alert.id).status is AlertStatus.OPEN
        assert len(alert_repo.history(alert.id)) == 1

    def test_reopen_colliding_with_active_raises(self, trigger, alert_repo):
        first = alert_repo.insert(_alert(trigger.id))
        alert_repo.compare_and_set_status(
            first.id, AlertStatus.OPEN, AlertStatus.DISMISSED, now=T0, resolved_at=None
        )
        alert_repo.insert(_alert(trigger.id, started=T0 + timedelta(minutes=1)))
        with pytest.raises(DuplicateOpenAlertError):
            alert_repo.compare_and_set_status(
                first.id, AlertStatus.DISMISSED, AlertStatus.OPEN, now=T0, resolved_at=None
            )
        assert alert_repo.get(first.id).status is AlertStatus.DISMISSED

    def test_set_assignee(self, trigger, alert_repo):
        alert = alert_repo.insert(_alert(trigger.id))
        updated = alert_repo.set_assignee(alert.id, "user-1", now=T0, actor_id="user-1")
        assert updated.assignee_id == "user-1"
        assert updated.user.name == "Dana Operator"
        assert alert_repo.history(alert.id)[-1].reason == "assigned to user-1"
        assert alert_repo.set_assignee("missing", "user-1", now=T0) is None


class TestAlertQuery:
    @pytest.fixture
    def alerts(self, trigger, alert_repo):
        made = [
            alert_repo.insert(_alert(trigger.id, "cell-1", started=T0)),
            alert_repo.insert(
                _alert(trigger.id, "cell-2", started=T0 + timedelta(hours=1), severity=Severity.LOW)
            ),
            alert_repo.insert(
                _alert(trigger.id, "cell-9", started=T0 + timedelta(hours=2), organization_id="org-2", site_id="site-9")
            ),
        ]
        alert_repo.compare_and_set_status(
            made[0].id, AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED, now=T0, resolved_at=None
        )
        return made

    def test_newest_first(self, alerts, alert_repo):
        assert [a.cell_id for a in alert_repo.query(AlertQuery())] == ["cell-9", "cell-2", "cell-1"]

    def test_status_filter(self, alerts, alert_repo):
        found = alert_repo.query(AlertQuery(statuses={AlertStatus.OPEN}))
        assert {a.cell_id for a in found} == {"cell-2", "cell-9"}

    def test_severity_and_org_filters(self, alerts, alert_repo):
        assert [a.cell_id for a in alert_repo.query(AlertQuery(severities={Severity.LOW}))] == ["cell-2"]
        assert [a.cell_id for a in alert_repo.query(AlertQuery(organization_id="org-2"))] == ["cell-9"]

    def test_time_window_and_limit(self, alerts, alert_repo):
        found = alert_repo.query(AlertQuery(started_after=T0 + timedelta(minutes=30)))
        assert {a.cell_id for a in found} == {"cell-2", "cell-9"}
        assert len(alert_repo.query(AlertQuery(limit=1))) == 1


# ---------------------------------------------------------------------------
# Engine setup
# ---------------------------------------------------------------------------


class TestEngineSetup:
    def test_init_db_is_idempotent(self, engine):
        init_db(engine)
        with engine.connect() as conn:
            rows = conn.execute(select(GrainwatchMetaRow.value)).scalars().all()
        assert rows == [SCHEMA_VERSION]

    def test_file_database_uses_wal(self, tmp_path):
        eng = create_grainwatch_engine(str(tmp_path / "grain.db"))
        try:
            with eng.connect() as conn:
                mode = conn.execute(text("PRAGMA journal_mode")).scalar()
                fks = conn.execute(text("PRAGMA foreign_keys")).scalar()
        finally:
            eng.dispose()
        assert mode == "wal"
        assert fks == 1
