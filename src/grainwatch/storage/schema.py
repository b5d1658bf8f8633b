"""SQLAlchemy ORM schema for Grainwatch.

Defines all database tables: topology (organizations, sites, compounds,
cells, commodity types, sensors, users), triggers, readings, alerts,
alert_events, and _grainwatch_meta.

IMPORTANT: enums are imported from the domain models -- they are NOT
redefined here. The ORM uses the same Python enums.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from grainwatch.models.alert import AlertStatus
from grainwatch.models.trigger import ConditionLogic, MetricType, ScopeType, Severity

# Raw SQL predicate for the partial unique index on alerts. Kept in sync with
# models.alert.ACTIVE_STATUSES.
ACTIVE_STATUS_SQL = "status IN ('OPEN', 'ACKNOWLEDGED', 'IN_PROGRESS')"


class Base(DeclarativeBase):
    """Base class for all Grainwatch ORM models."""

    pass


class GrainwatchMetaRow(Base):
    """Key/value metadata (schema_version)."""

    __tablename__ = "_grainwatch_meta"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)


# ---------------------------------------------------------------------------
# Topology
# ---------------------------------------------------------------------------


class OrganizationRow(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class SiteRow(Base):
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    organization_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class CompoundRow(Base):
    __tablename__ = "compounds"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    site_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class CommodityTypeRow(Base):
    __tablename__ = "commodity_types"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class CellRow(Base):
    __tablename__ = "cells"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    compound_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("compounds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    commodity_type_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("commodity_types.id", ondelete="SET NULL"), nullable=True
    )


class SensorRow(Base):
    __tablename__ = "sensors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    cell_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("cells.id", ondelete="CASCADE"), nullable=False, index=True
    )
    mac_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    organization_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    locale: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TriggerRow(Base):
    """A stored trigger.

    Conditions and actions are stored as JSON and re-validated into the
    discriminated-union models on load. Scope ids carry no foreign keys:
    a trigger may outlive the topology it points at, in which case its
    scope resolves to nothing.
    """

    __tablename__ = "triggers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scope_type: Mapped[ScopeType] = mapped_column(nullable=False)
    site_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    compound_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cell_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    commodity_type_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    condition_logic: Mapped[ConditionLogic] = mapped_column(nullable=False)
    conditions_json: Mapped[list] = mapped_column(JSON, nullable=False)
    actions_json: Mapped[list] = mapped_column(JSON, nullable=False)
    severity: Mapped[Severity] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_triggers_active", "is_active"),
    )


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------


class ReadingRow(Base):
    """Append-only sensor reading, one metric per row.

    The unique constraint makes re-delivered ingestion batches idempotent.
    """

    __tablename__ = "readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sensor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cell_id: Mapped[str] = mapped_column(String(64), nullable=False)
    metric: Mapped[MetricType] = mapped_column(nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("sensor_id", "metric", "recorded_at", name="uq_readings_sensor_metric_time"),
        Index("ix_readings_cell_metric_time", "cell_id", "metric", "recorded_at"),
    )


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class AlertRow(Base):
    """An alert raised for a (trigger, cell) pair.

    Location ids and names are copied at creation so the alert still
    displays correctly after topology changes. ``trigger_id`` is set to
    NULL when the trigger is deleted so history survives.
    """

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    trigger_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("triggers.id", ondelete="SET NULL"), nullable=True
    )
    organization_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    site_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    site_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    compound_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    compound_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cell_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cell_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    commodity_type_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    commodity_type_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    severity: Mapped[Severity] = mapped_column(nullable=False)
    status: Mapped[AlertStatus] = mapped_column(nullable=False)
    metric: Mapped[Optional[MetricType]] = mapped_column(nullable=True)
    value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    threshold_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        # At most one unresolved alert per dedup key.
        Index(
            "uq_alerts_active_key",
            "trigger_id",
            "cell_id",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_SQL),
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        Index("ix_alerts_key_time", "trigger_id", "cell_id", "started_at"),
        Index("ix_alerts_started", "started_at"),
    )


class AlertEventRow(Base):
    """Append-only status history for an alert.

    ``actor_id`` is NULL for transitions made by the engine itself.
    """

    __tablename__ = "alert_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status: Mapped[Optional[AlertStatus]] = mapped_column(nullable=True)
    to_status: Mapped[AlertStatus] = mapped_column(nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
