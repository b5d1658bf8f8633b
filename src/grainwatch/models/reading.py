"""Sensor reading models.

Reading is the engine-internal, append-only record for one metric of one
sensor at one instant. IngestRecord is the wire shape accepted from
gateways: one record carries temperature, humidity and battery together
and is split into one Reading per metric on ingestion.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from grainwatch.models.trigger import MetricType
from grainwatch.timeutil import to_utc


@dataclass(frozen=True)
class Reading:
    """One metric value recorded by a sensor in a cell."""

    sensor_id: str
    cell_id: str
    metric: MetricType
    value: float
    recorded_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "metric", MetricType(self.metric))
        object.__setattr__(self, "value", float(self.value))
        object.__setattr__(self, "recorded_at", to_utc(self.recorded_at))


class IngestRecord(BaseModel):
    """A single gateway/sensor payload entry.

    Either ``sensor_id`` or ``mac_id`` identifies the sensor. ``emc`` may be
    supplied pre-computed by the gateway; otherwise it is derived through
    the injected EMC lookup, when one is configured.
    """

    # NaN and infinity are rejected here; they never reach storage
    model_config = ConfigDict(populate_by_name=True, frozen=True, allow_inf_nan=False)

    sensor_id: Optional[str] = Field(default=None, alias="sensorId")
    mac_id: Optional[str] = Field(default=None, alias="macId")
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    battery_percent: Optional[float] = Field(default=None, alias="batteryPercent", ge=0, le=100)
    emc: Optional[float] = None
    recorded_at: datetime = Field(alias="recordedAt")

    @field_validator("recorded_at")
    @classmethod
    def _normalise_time(cls, v: datetime) -> datetime:
        return to_utc(v)

    @model_validator(mode="after")
    def _needs_identity(self) -> IngestRecord:
        if not self.sensor_id and not self.mac_id:
            raise ValueError("either sensorId or macId is required")
        return self

    @property
    def identifier(self) -> str:
        return self.sensor_id or self.mac_id or ""

    def metric_values(self) -> dict[MetricType, float]:
        """Metric values carried by this record (missing ones omitted)."""
        values: dict[MetricType, float] = {}
        if self.temperature is not None:
            values[MetricType.TEMPERATURE] = self.temperature
        if self.humidity is not None:
            values[MetricType.HUMIDITY] = self.humidity
        if self.emc is not None:
            values[MetricType.EMC] = self.emc
        return values


@dataclass(frozen=True)
class IngestResult:
    """Outcome of ingesting a batch of records."""

    accepted: list[Reading] = field(default_factory=list)
    duplicates: int = 0
    unknown_sensors: list[str] = field(default_factory=list)
    # EvaluationResult records, filled in when the batch is evaluated
    evaluations: list = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)
