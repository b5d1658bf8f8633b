"""Tests for ReadingWindowStore and ReadingIngestor.

Covers:
- as_of lookups relative to a reference time or the clock
- Retention window sizing from active CHANGE conditions
- Pruning
- Ingestion: aliases, MAC lookup, unknown sensors, duplicates, EMC lookup
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from grainwatch.exceptions import UnknownSensorError
from grainwatch.models.reading import IngestRecord
from grainwatch.models.trigger import ChangeCondition, MetricType
from grainwatch.readings.ingest import ReadingIngestor
from grainwatch.readings.window import ReadingWindowStore

from tests.conftest import T0, make_reading, make_trigger

TEMP = MetricType.TEMPERATURE


@pytest.fixture
def window(reading_repo, clock) -> ReadingWindowStore:
    return ReadingWindowStore(reading_repo, retention_days=7, clock=clock)


def _change_trigger(hours: float, **overrides):
    return make_trigger(
        conditions=[
            ChangeCondition(metric=TEMP, change_direction="INCREASE", change_amount=5, time_window_hours=hours)
        ],
        **overrides,
    )


# ---------------------------------------------------------------------------
# Window
# ---------------------------------------------------------------------------


class TestWindow:
    def test_record_reports_duplicates(self, window):
        assert window.record(make_reading(20)) is True
        assert window.record(make_reading(20)) is False

    def test_as_of_uses_reference(self, window):
        window.record(make_reading(27, at=T0 - timedelta(hours=48)))
        window.record(make_reading(32, at=T0))
        found = window.as_of("cell-1", TEMP, timedelta(hours=48), reference=T0)
        assert found.value == 27
        assert window.as_of("cell-1", TEMP, timedelta(hours=49), reference=T0) is None

    def test_as_of_defaults_to_clock(self, window, clock):
        window.record(make_reading(27, at=T0 - timedelta(hours=48)))
        assert window.as_of("cell-1", TEMP, timedelta(hours=48)).value == 27
        clock.advance(hours=-1)
        assert window.as_of("cell-1", TEMP, timedelta(hours=48)) is None

    def test_latest(self, window):
        assert window.latest("cell-1", TEMP) is None
        window.record(make_reading(20, at=T0 - timedelta(minutes=5)))
        window.record(make_reading(21, at=T0))
        assert window.latest("cell-1", TEMP).value == 21


class TestRetention:
    def test_floor_when_no_change_windows(self, window):
        assert window.retention_window([make_trigger()]) == timedelta(days=7)

    def test_longest_active_change_window_wins(self, window):
        triggers = [_change_trigger(24 * 10), _change_trigger(24 * 30, is_active=False)]
        assert window.retention_window(triggers) == timedelta(days=10)

    def test_prune_keeps_window(self, window):
        window.record(make_reading(1, at=T0 - timedelta(days=12)))
        window.record(make_reading(2, at=T0 - timedelta(days=9)))
        window.record(make_reading(3, at=T0 - timedelta(days=1)))
        assert window.prune([_change_trigger(24 * 10)]) == 1
        assert window.prune([]) == 1
        assert window.latest("cell-1", TEMP).value == 3

    def test_prune_explicit_now(self, window):
        window.record(make_reading(1, at=T0 - timedelta(days=2)))
        assert window.prune([], now=T0 + timedelta(days=6)) == 1


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@pytest.fixture
def ingestor(seeded, window) -> ReadingIngestor:
    return ReadingIngestor(seeded, window)


class TestIngest:
    def test_splits_metrics(self, ingestor):
        result = ingestor.ingest(
            [{"sensorId": "sen-2", "temperature": 18.5, "humidity": 61, "recordedAt": T0}]
        )
        assert result.accepted_count == 2
        assert {r.metric for r in result.accepted} == {TEMP, MetricType.HUMIDITY}
        assert all(r.cell_id == "cell-2" for r in result.accepted)

    def test_mac_lookup(self, ingestor):
        result = ingestor.ingest([IngestRecord(macId="AA:BB:CC:00:00:01", temperature=20, recordedAt=T0)])
        [reading] = result.accepted
        assert (reading.sensor_id, reading.cell_id) == ("sen-1", "cell-1")

    def test_unknown_sensor_dropped(self, ingestor, caplog):
        result = ingestor.ingest(
            [
                {"sensorId": "ghost", "temperature": 20, "recordedAt": T0},
                {"sensorId": "sen-1", "temperature": 20, "recordedAt": T0},
            ]
        )
        assert result.unknown_sensors == ["ghost"]
        assert result.accepted_count == 1
        assert "ghost" in caplog.text

    def test_strict_unknown_sensor_raises_before_storing(self, ingestor, window):
        batch = [
            {"sensorId": "sen-1", "temperature": 20, "recordedAt": T0},
            {"sensorId": "ghost", "temperature": 20, "recordedAt": T0},
        ]
        with pytest.raises(UnknownSensorError) as info:
            ingestor.ingest(batch, strict=True)
        assert info.value.identifier == "ghost"
        assert window.latest("cell-1", MetricType.TEMPERATURE) is None

    def test_redelivery_counts_duplicates(self, ingestor):
        batch = [{"sensorId": "sen-1", "temperature": 20, "humidity": 50, "recordedAt": T0}]
        ingestor.ingest(batch)
        again = ingestor.ingest(batch)
        assert again.accepted_count == 0
        assert again.duplicates == 2

    def test_malformed_record_raises(self, ingestor):
        with pytest.raises(ValidationError):
            ingestor.ingest([{"temperature": 20, "recordedAt": T0}])

    def test_emc_derived_with_commodity(self, seeded, window):
        calls = []

        def lookup(commodity, temperature, humidity):
            calls.append((commodity, temperature, humidity))
            return 14.2

        ingestor = ReadingIngestor(seeded, window, emc_lookup=lookup)
        result = ingestor.ingest([{"sensorId": "sen-1", "temperature": 20, "humidity": 60, "recordedAt": T0}])
        emc = [r for r in result.accepted if r.metric is MetricType.EMC]
        assert [r.value for r in emc] == [14.2]
        assert calls == [("wheat", 20.0, 60.0)]

    def test_emc_not_derived_without_humidity(self, seeded, window):
        ingestor = ReadingIngestor(seeded, window, emc_lookup=lambda *args: 99.0)
        result = ingestor.ingest([{"sensorId": "sen-1", "temperature": 20, "recordedAt": T0}])
        assert {r.metric for r in result.accepted} == {TEMP}

    def test_supplied_emc_wins(self, seeded, window):
        ingestor = ReadingIngestor(seeded, window, emc_lookup=lambda *args: 99.0)
        result = ingestor.ingest(
            [{"sensorId": "sen-1", "temperature": 20, "humidity": 60, "emc": 13.0, "recordedAt": T0}]
        )
        assert [r.value for r in result.accepted if r.metric is MetricType.EMC] == [13.0]

    def test_lookup_returning_none_skips_emc(self, seeded, window):
        ingestor = ReadingIngestor(seeded, window, emc_lookup=lambda *args: None)
        result = ingestor.ingest([{"sensorId": "sen-9", "temperature": 20, "humidity": 60, "recordedAt": T0}])
        assert MetricType.EMC not in {r.metric for r in result.accepted}
