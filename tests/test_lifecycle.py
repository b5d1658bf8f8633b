"""Tests for AlertLifecycleManager.

Covers:
- open_or_retain dedup (one unresolved alert per trigger/cell)
- Denormalised labels and details on new alerts
- auto_clear only touches unresolved alerts
- Operator transitions, resolved_at bookkeeping and history
- Reopen collisions, re-fire cooldown, assignment
"""

from __future__ import annotations

import pytest

from grainwatch.alerts.lifecycle import AlertLifecycleManager
from grainwatch.exceptions import (
    AlertNotFoundError,
    DuplicateOpenAlertError,
    InvalidTransitionError,
    UserNotFoundError,
)
from grainwatch.models.alert import AlertQuery, AlertStatus
from grainwatch.models.evaluation import FiringContext
from grainwatch.models.trigger import MetricType

from tests.conftest import make_trigger


@pytest.fixture
def trigger(seeded, trigger_repo):
    t = make_trigger()
    trigger_repo.save(t)
    return t


@pytest.fixture
def lifecycle(alert_repo, seeded, clock) -> AlertLifecycleManager:
    return AlertLifecycleManager(alert_repo, seeded, clock=clock)


def _context(trigger, cell_id="cell-1", value=31.0) -> FiringContext:
    return FiringContext(
        trigger_id=trigger.id,
        trigger_name=trigger.name,
        severity=trigger.severity.value,
        cell_id=cell_id,
        metric="TEMPERATURE",
        value=value,
        unit="°C",
        threshold=30.0,
        matched_conditions=tuple(c.id for c in trigger.conditions),
    )


# ---------------------------------------------------------------------------
# Open / retain
# ---------------------------------------------------------------------------


class TestOpenOrRetain:
    def test_first_firing_opens(self, lifecycle, trigger, clock):
        outcome = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        assert outcome.newly_opened
        alert = outcome.alert
        assert alert.status is AlertStatus.OPEN
        assert alert.started_at == clock.now
        assert alert.resolved_at is None
        assert (alert.metric, alert.value, alert.threshold_value, alert.unit) == (
            MetricType.TEMPERATURE, 31.0, 30.0, "°C",
        )

    def test_key_locks_are_bounded(self, lifecycle):
        keys = [(f"trg-{i}", f"cell-{i}") for i in range(500)]
        locks = {id(lifecycle._key_lock(*key)) for key in keys}
        assert len(locks) <= len(lifecycle._key_locks)
        assert lifecycle._key_lock("trg-1", "cell-1") is lifecycle._key_lock("trg-1", "cell-1")

    def test_labels_denormalised(self, lifecycle, trigger):
        alert = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger)).alert
        stored = lifecycle.get(alert.id)
        assert (stored.site.name, stored.compound.name, stored.cell.name) == (
            "North Site", "Compound A", "Bin 1",
        )
        assert stored.commodity.name == "Wheat"
        assert stored.organization_id == "org-1"
        assert stored.details == {
            "matched_conditions": [trigger.conditions[0].id],
            "condition_logic": "AND",
        }

    def test_second_firing_retains(self, lifecycle, trigger, clock):
        first = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        clock.advance(minutes=5)
        second = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger, value=33))
        assert not second.newly_opened
        assert second.alert.id == first.alert.id
        assert len(lifecycle.list()) == 1

    def test_retains_acknowledged(self, lifecycle, trigger):
        first = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        lifecycle.acknowledge(first.alert.id, "user-1")
        again = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        assert not again.newly_opened
        assert again.alert.status is AlertStatus.ACKNOWLEDGED

    def test_separate_cells_get_separate_alerts(self, lifecycle, trigger):
        a = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        b = lifecycle.open_or_retain(trigger, "cell-2", _context(trigger, "cell-2"))
        assert a.newly_opened and b.newly_opened
        assert a.alert.id != b.alert.id

    def test_new_alert_after_dismissal(self, lifecycle, trigger, clock):
        first = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        lifecycle.transition(first.alert.id, AlertStatus.DISMISSED, "user-1")
        clock.advance(minutes=1)
        second = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        assert second.newly_opened
        assert second.alert.id != first.alert.id


# ---------------------------------------------------------------------------
# Auto-clear
# ---------------------------------------------------------------------------


class TestAutoClear:
    def test_resolves_active_alert(self, lifecycle, trigger, clock):
        opened = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger)).alert
        clock.advance(minutes=10)
        cleared = lifecycle.auto_clear(trigger.id, "cell-1")
        assert cleared.id == opened.id
        assert cleared.status is AlertStatus.RESOLVED
        assert cleared.resolved_at == clock.now
        last = lifecycle.history(opened.id)[-1]
        assert last.actor_id is None
        assert last.reason == "condition no longer holds"

    def test_resolves_in_progress(self, lifecycle, trigger):
        opened = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger)).alert
        lifecycle.transition(opened.id, AlertStatus.IN_PROGRESS, "user-1")
        assert lifecycle.auto_clear(trigger.id, "cell-1").status is AlertStatus.RESOLVED

    def test_nothing_to_clear(self, lifecycle, trigger):
        assert lifecycle.auto_clear(trigger.id, "cell-1") is None

    def test_dismissed_left_alone(self, lifecycle, trigger):
        opened = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger)).alert
        lifecycle.transition(opened.id, AlertStatus.DISMISSED, "user-1")
        assert lifecycle.auto_clear(trigger.id, "cell-1") is None
        assert lifecycle.get(opened.id).status is AlertStatus.DISMISSED


# ---------------------------------------------------------------------------
# Operator transitions
# ---------------------------------------------------------------------------


@pytest.fixture
def alert(lifecycle, trigger):
    return lifecycle.open_or_retain(trigger, "cell-1", _context(trigger)).alert


class TestTransitions:
    def test_full_walk(self, lifecycle, alert, clock):
        lifecycle.acknowledge(alert.id, "user-1")
        lifecycle.transition(alert.id, AlertStatus.IN_PROGRESS, "user-1")
        clock.advance(hours=1)
        resolved = lifecycle.transition(alert.id, AlertStatus.RESOLVED, "user-1", reason="aerated")
        assert resolved.resolved_at == clock.now

        statuses = [(e.from_status, e.to_status) for e in lifecycle.history(alert.id)]
        assert statuses == [
            (None, AlertStatus.OPEN),
            (AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED),
            (AlertStatus.ACKNOWLEDGED, AlertStatus.IN_PROGRESS),
            (AlertStatus.IN_PROGRESS, AlertStatus.RESOLVED),
        ]
        assert lifecycle.history(alert.id)[-1].reason == "aerated"

    def test_invalid_edge_writes_nothing(self, lifecycle, alert):
        with pytest.raises(InvalidTransitionError) as info:
            lifecycle.transition(alert.id, AlertStatus.RESOLVED, "user-1")
        assert (info.value.current, info.value.requested) == ("OPEN", "RESOLVED")
        assert lifecycle.get(alert.id).status is AlertStatus.OPEN
        assert len(lifecycle.history(alert.id)) == 1

    def test_same_status_is_invalid(self, lifecycle, alert):
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(alert.id, AlertStatus.OPEN)

    def test_accepts_status_string(self, lifecycle, alert):
        assert lifecycle.transition(alert.id, "DISMISSED").status is AlertStatus.DISMISSED

    def test_reopen_clears_resolved_at(self, lifecycle, alert, trigger):
        lifecycle.auto_clear(trigger.id, "cell-1")
        reopened = lifecycle.transition(alert.id, AlertStatus.OPEN, "user-1")
        assert reopened.status is AlertStatus.OPEN
        assert reopened.resolved_at is None

    def test_reopen_blocked_by_newer_alert(self, lifecycle, alert, trigger, clock):
        lifecycle.transition(alert.id, AlertStatus.DISMISSED)
        clock.advance(minutes=1)
        lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        with pytest.raises(DuplicateOpenAlertError):
            lifecycle.transition(alert.id, AlertStatus.OPEN)
        assert lifecycle.get(alert.id).status is AlertStatus.DISMISSED

    def test_unknown_alert(self, lifecycle):
        with pytest.raises(AlertNotFoundError):
            lifecycle.transition("missing", AlertStatus.ACKNOWLEDGED)
        with pytest.raises(AlertNotFoundError):
            lifecycle.history("missing")


# ---------------------------------------------------------------------------
# Cooldown, assignment, listing
# ---------------------------------------------------------------------------


class TestCooldown:
    def test_refire_suppressed_within_cooldown(self, alert_repo, seeded, trigger, clock):
        lifecycle = AlertLifecycleManager(alert_repo, seeded, clock=clock, refire_cooldown=600)
        lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        lifecycle.auto_clear(trigger.id, "cell-1")

        clock.advance(minutes=5)
        outcome = lifecycle.open_or_retain(trigger, "cell-1", _context(trigger))
        assert outcome.suppressed and outcome.alert is None

        clock.advance(minutes=6)
        assert lifecycle.open_or_retain(trigger, "cell-1", _context(trigger)).newly_opened


class TestAssign:
    def test_assign_and_unassign(self, lifecycle, alert):
        assigned = lifecycle.assign(alert.id, "user-1", actor_id="user-1")
        assert assigned.user.name == "Dana Operator"
        assert lifecycle.list(AlertQuery(user_id="user-1"))[0].id == alert.id
        assert lifecycle.assign(alert.id, None).assignee_id is None

    def test_unknown_user(self, lifecycle, alert):
        with pytest.raises(UserNotFoundError):
            lifecycle.assign(alert.id, "user-x")

    def test_unknown_alert(self, lifecycle):
        with pytest.raises(AlertNotFoundError):
            lifecycle.assign("missing", "user-1")
