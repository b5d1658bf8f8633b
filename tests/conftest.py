"""Shared test fixtures for Grainwatch.

Provides in-memory SQLite engine, session factory, repository fixtures,
a seeded facility topology and a controllable clock.

Seeded topology::

    org-1
      site-1
        cmp-a: cell-1 (wheat), cell-2 (barley)
        cmp-b: cell-3 (wheat)
    org-2
      site-9
        cmp-z: cell-9
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from grainwatch.models.reading import Reading
from grainwatch.models.topology import (
    Cell,
    CommodityType,
    Compound,
    Organization,
    Sensor,
    Site,
    User,
)
from grainwatch.models.trigger import (
    EmailAction,
    MetricType,
    NotificationTemplate,
    Operator,
    ScopeType,
    Severity,
    ThresholdCondition,
    Trigger,
)
from grainwatch.storage.engine import create_grainwatch_engine, create_session_factory, init_db
from grainwatch.storage.sqlite import (
    SqlAlertRepository,
    SqlReadingRepository,
    SqlTopologyRepository,
    SqlTriggerRepository,
)

T0 = datetime(2024, 5, 1, 12, 0, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_grainwatch_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def topology_repo(session_factory) -> SqlTopologyRepository:
    return SqlTopologyRepository(session_factory)


@pytest.fixture
def trigger_repo(session_factory) -> SqlTriggerRepository:
    return SqlTriggerRepository(session_factory)


@pytest.fixture
def reading_repo(session_factory) -> SqlReadingRepository:
    return SqlReadingRepository(session_factory)


@pytest.fixture
def alert_repo(session_factory) -> SqlAlertRepository:
    return SqlAlertRepository(session_factory)


# ------------------------------------------------------------------
# Topology
# ------------------------------------------------------------------


def seed_topology(target) -> None:
    """Write the standard topology through anything with the ``save_*`` or
    ``add_*`` seeding methods (a TopologyRepository or a Grainwatch)."""
    prefix = "add_" if hasattr(target, "add_cell") else "save_"

    def put(kind: str, obj) -> None:
        getattr(target, prefix + kind)(obj)

    put("organization", Organization(id="org-1", name="Prairie Grain"))
    put("organization", Organization(id="org-2", name="Other Co"))
    put("site", Site(id="site-1", organization_id="org-1", name="North Site"))
    put("site", Site(id="site-9", organization_id="org-2", name="Far Site"))
    put("compound", Compound(id="cmp-a", site_id="site-1", name="Compound A"))
    put("compound", Compound(id="cmp-b", site_id="site-1", name="Compound B"))
    put("compound", Compound(id="cmp-z", site_id="site-9", name="Compound Z"))
    put("commodity_type", CommodityType(id="wheat", name="Wheat"))
    put("commodity_type", CommodityType(id="barley", name="Barley"))
    put("cell", Cell(id="cell-1", compound_id="cmp-a", name="Bin 1", commodity_type_id="wheat"))
    put("cell", Cell(id="cell-2", compound_id="cmp-a", name="Bin 2", commodity_type_id="barley"))
    put("cell", Cell(id="cell-3", compound_id="cmp-b", name="Bin 3", commodity_type_id="wheat"))
    put("cell", Cell(id="cell-9", compound_id="cmp-z", name="Bin 9"))
    put("sensor", Sensor(id="sen-1", cell_id="cell-1", mac_id="AA:BB:CC:00:00:01"))
    put("sensor", Sensor(id="sen-2", cell_id="cell-2"))
    put("sensor", Sensor(id="sen-3", cell_id="cell-3"))
    put("sensor", Sensor(id="sen-9", cell_id="cell-9"))
    put("user", User(id="user-1", name="Dana Operator", organization_id="org-1", locale="fr"))


@pytest.fixture
def seeded(topology_repo) -> SqlTopologyRepository:
    seed_topology(topology_repo)
    return topology_repo


# ------------------------------------------------------------------
# Builders
# ------------------------------------------------------------------


def make_trigger(**overrides) -> Trigger:
    """A CELL-scoped TEMPERATURE ABOVE 30 trigger on cell-1, overridable."""
    data = {
        "name": "Hot bin",
        "scope_type": ScopeType.CELL,
        "organization_id": "org-1",
        "cell_id": "cell-1",
        "conditions": [
            ThresholdCondition(metric=MetricType.TEMPERATURE, operator=Operator.ABOVE, value=30)
        ],
        "actions": [
            EmailAction(
                template=NotificationTemplate(
                    subject="{severity}: {cell_name}",
                    body="{cell_name} in {site_name} reads {value}{unit} (limit {threshold})",
                ),
                recipients=["ops@example.com"],
            )
        ],
        "severity": Severity.HIGH,
    }
    data.update(overrides)
    return Trigger(**data)


def make_reading(
    value: float,
    *,
    at: datetime = T0,
    cell_id: str = "cell-1",
    sensor_id: str = "sen-1",
    metric: MetricType = MetricType.TEMPERATURE,
) -> Reading:
    return Reading(
        sensor_id=sensor_id, cell_id=cell_id, metric=metric, value=value, recorded_at=at
    )
