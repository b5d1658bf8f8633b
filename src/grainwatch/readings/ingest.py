"""Reading ingestion boundary.

ReadingIngestor turns gateway payload records into per-metric Readings:
resolve the sensor (by id, then MAC), fill in EMC when the record does not
carry it, and append each reading to the window store. Re-delivered
records are counted as duplicates, not errors.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from grainwatch.exceptions import UnknownSensorError
from grainwatch.models.reading import IngestRecord, IngestResult, Reading
from grainwatch.models.trigger import MetricType

if TYPE_CHECKING:
    from grainwatch.readings.window import ReadingWindowStore
    from grainwatch.storage.repositories import TopologyRepository

logger = logging.getLogger(__name__)

# (commodity_type_id, temperature, humidity) -> EMC percent, or None when the
# commodity has no lookup table or the point falls outside it.
EmcLookup = Callable[[Optional[str], float, float], Optional[float]]


class ReadingIngestor:
    """Split, resolve and record incoming sensor records."""

    def __init__(
        self,
        topology: TopologyRepository,
        window: ReadingWindowStore,
        *,
        emc_lookup: EmcLookup | None = None,
    ) -> None:
        self._topology = topology
        self._window = window
        self._emc_lookup = emc_lookup

    def to_readings(self, record: IngestRecord) -> list[Reading] | None:
        """Readings carried by *record*, or None if its sensor is unknown."""
        sensor = self._topology.find_sensor(record.identifier)
        if sensor is None:
            return None

        values = record.metric_values()
        if MetricType.EMC not in values:
            emc = self._derive_emc(sensor.cell_id, record)
            if emc is not None:
                values[MetricType.EMC] = emc

        return [
            Reading(
                sensor_id=sensor.id,
                cell_id=sensor.cell_id,
                metric=metric,
                value=value,
                recorded_at=record.recorded_at,
            )
            for metric, value in values.items()
        ]

    def ingest(self, records: Iterable[IngestRecord | dict], *, strict: bool = False) -> IngestResult:
        """Record every reading in *records*.

        Dict entries are validated as IngestRecord (camelCase aliases
        accepted). Raises pydantic.ValidationError on a malformed entry.
        Records from unknown sensors are dropped and listed in the result;
        with ``strict=True`` they raise UnknownSensorError instead. Either
        error is raised before any reading of the batch is stored.
        """
        resolved: list[Reading] = []
        unknown: list[str] = []

        for item in records:
            record = item if isinstance(item, IngestRecord) else IngestRecord.model_validate(item)
            readings = self.to_readings(record)
            if readings is None:
                if strict:
                    raise UnknownSensorError(record.identifier)
                logger.warning("Dropping record from unknown sensor %s", record.identifier)
                unknown.append(record.identifier)
                continue
            resolved.extend(readings)

        accepted: list[Reading] = []
        duplicates = 0
        for reading in resolved:
            if self._window.record(reading):
                accepted.append(reading)
            else:
                duplicates += 1

        return IngestResult(accepted=accepted, duplicates=duplicates, unknown_sensors=unknown)

    def _derive_emc(self, cell_id: str, record: IngestRecord) -> Optional[float]:
        if self._emc_lookup is None:
            return None
        if record.temperature is None or record.humidity is None:
            return None
        location = self._topology.locate_cell(cell_id)
        commodity = location.commodity_type_id if location else None
        return self._emc_lookup(commodity, record.temperature, record.humidity)
