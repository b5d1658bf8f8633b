"""SQL implementations of repository interfaces.

All repositories use SQLAlchemy 2.0-style queries (select() + session.execute()).
Each repository takes a session factory in its constructor and runs every
call in its own short transaction, so one repository instance can be
shared by several evaluation workers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from grainwatch.exceptions import DuplicateOpenAlertError, TriggerConfigError
from grainwatch.models.alert import (
    ACTIVE_STATUSES,
    AlertEventInfo,
    AlertInfo,
    AlertQuery,
    AlertStatus,
    LabelRef,
)
from grainwatch.models.reading import Reading
from grainwatch.models.topology import (
    Cell,
    CellLocation,
    CommodityType,
    Compound,
    Organization,
    Sensor,
    Site,
    User,
)
from grainwatch.models.trigger import MetricType, Trigger, parse_trigger
from grainwatch.storage.engine import session_scope
from grainwatch.storage.repositories import (
    AlertRepository,
    ReadingRepository,
    TopologyRepository,
    TriggerRepository,
)
from grainwatch.storage.schema import (
    AlertEventRow,
    AlertRow,
    CellRow,
    CommodityTypeRow,
    CompoundRow,
    OrganizationRow,
    ReadingRow,
    SensorRow,
    SiteRow,
    TriggerRow,
    UserRow,
)
from grainwatch.timeutil import utcnow


class SqlTopologyRepository(TopologyRepository):
    """SQL implementation of the topology repository."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory

    def _merge(self, row: object) -> None:
        with session_scope(self._factory) as session:
            session.merge(row)

    def save_organization(self, organization: Organization) -> None:
        self._merge(OrganizationRow(id=organization.id, name=organization.name))

    def save_site(self, site: Site) -> None:
        self._merge(SiteRow(id=site.id, organization_id=site.organization_id, name=site.name))

    def save_compound(self, compound: Compound) -> None:
        self._merge(CompoundRow(id=compound.id, site_id=compound.site_id, name=compound.name))

    def save_commodity_type(self, commodity_type: CommodityType) -> None:
        self._merge(CommodityTypeRow(id=commodity_type.id, name=commodity_type.name))

    def save_cell(self, cell: Cell) -> None:
        self._merge(
            CellRow(
                id=cell.id,
                compound_id=cell.compound_id,
                name=cell.name,
                commodity_type_id=cell.commodity_type_id,
            )
        )

    def save_sensor(self, sensor: Sensor) -> None:
        self._merge(SensorRow(id=sensor.id, cell_id=sensor.cell_id, mac_id=sensor.mac_id))

    def save_user(self, user: User) -> None:
        self._merge(
            UserRow(
                id=user.id,
                name=user.name,
                organization_id=user.organization_id,
                locale=user.locale,
            )
        )

    def delete_cell(self, cell_id: str) -> bool:
        with session_scope(self._factory) as session:
            row = session.get(CellRow, cell_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def _ids(self, stmt) -> frozenset[str]:  # type: ignore[no-untyped-def]
        with session_scope(self._factory) as session:
            return frozenset(session.execute(stmt).scalars().all())

    def all_cell_ids(self) -> frozenset[str]:
        return self._ids(select(CellRow.id))

    def cell_ids_for_organization(self, organization_id: str) -> frozenset[str]:
        stmt = (
            select(CellRow.id)
            .join(CompoundRow, CompoundRow.id == CellRow.compound_id)
            .join(SiteRow, SiteRow.id == CompoundRow.site_id)
            .where(SiteRow.organization_id == organization_id)
        )
        return self._ids(stmt)

    def cell_ids_for_site(self, site_id: str) -> frozenset[str]:
        stmt = (
            select(CellRow.id)
            .join(CompoundRow, CompoundRow.id == CellRow.compound_id)
            .where(CompoundRow.site_id == site_id)
        )
        return self._ids(stmt)

    def cell_ids_for_compound(self, compound_id: str) -> frozenset[str]:
        return self._ids(select(CellRow.id).where(CellRow.compound_id == compound_id))

    def cell_ids_for_commodity_type(self, commodity_type_id: str) -> frozenset[str]:
        return self._ids(select(CellRow.id).where(CellRow.commodity_type_id == commodity_type_id))

    def cell_exists(self, cell_id: str) -> bool:
        with session_scope(self._factory) as session:
            return session.get(CellRow, cell_id) is not None

    def locate_cell(self, cell_id: str) -> CellLocation | None:
        stmt = (
            select(CellRow, CompoundRow, SiteRow, CommodityTypeRow.name)
            .join(CompoundRow, CompoundRow.id == CellRow.compound_id)
            .join(SiteRow, SiteRow.id == CompoundRow.site_id)
            .outerjoin(CommodityTypeRow, CommodityTypeRow.id == CellRow.commodity_type_id)
            .where(CellRow.id == cell_id)
        )
        with session_scope(self._factory) as session:
            found = session.execute(stmt).first()
            if found is None:
                return None
            cell, compound, site, commodity_name = found
            return CellLocation(
                cell_id=cell.id,
                cell_name=cell.name,
                compound_id=compound.id,
                compound_name=compound.name,
                site_id=site.id,
                site_name=site.name,
                organization_id=site.organization_id,
                commodity_type_id=cell.commodity_type_id,
                commodity_type_name=commodity_name,
            )

    def find_sensor(self, identifier: str) -> Sensor | None:
        with session_scope(self._factory) as session:
            row = session.get(SensorRow, identifier)
            if row is None:
                row = session.execute(
                    select(SensorRow).where(SensorRow.mac_id == identifier)
                ).scalar_one_or_none()
            if row is None:
                return None
            return Sensor(id=row.id, cell_id=row.cell_id, mac_id=row.mac_id)

    def get_user(self, user_id: str) -> User | None:
        with session_scope(self._factory) as session:
            row = session.get(UserRow, user_id)
            if row is None:
                return None
            return User(
                id=row.id,
                name=row.name,
                organization_id=row.organization_id,
                locale=row.locale,
            )


def _trigger_row_to_dict(row: TriggerRow) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "scope_type": row.scope_type,
        "organization_id": row.organization_id,
        "site_id": row.site_id,
        "compound_id": row.compound_id,
        "cell_id": row.cell_id,
        "commodity_type_id": row.commodity_type_id,
        "condition_logic": row.condition_logic,
        "conditions": row.conditions_json,
        "actions": row.actions_json,
        "severity": row.severity,
        "is_active": row.is_active,
    }


def decode_trigger(data: dict) -> Trigger:
    """Validate a stored trigger payload, wrapping failures as TriggerConfigError."""
    try:
        return parse_trigger(data)
    except ValidationError as exc:
        raise TriggerConfigError(str(data.get("id", "?")), str(exc)) from exc


class SqlTriggerRepository(TriggerRepository):
    """SQL implementation of the trigger repository."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory

    def save(self, trigger: Trigger) -> None:
        now = utcnow()
        with session_scope(self._factory) as session:
            row = session.get(TriggerRow, trigger.id)
            if row is None:
                row = TriggerRow(id=trigger.id, created_at=now)
                session.add(row)
            row.organization_id = trigger.organization_id
            row.name = trigger.name
            row.description = trigger.description
            row.scope_type = trigger.scope_type
            row.site_id = trigger.site_id
            row.compound_id = trigger.compound_id
            row.cell_id = trigger.cell_id
            row.commodity_type_id = trigger.commodity_type_id
            row.condition_logic = trigger.condition_logic
            row.conditions_json = [c.model_dump(mode="json") for c in trigger.conditions]
            row.actions_json = [a.model_dump(mode="json") for a in trigger.actions]
            row.severity = trigger.severity
            row.is_active = trigger.is_active
            row.updated_at = now

    def get(self, trigger_id: str) -> Trigger | None:
        with session_scope(self._factory) as session:
            row = session.get(TriggerRow, trigger_id)
            if row is None:
                return None
            data = _trigger_row_to_dict(row)
        return decode_trigger(data)

    def delete(self, trigger_id: str) -> bool:
        with session_scope(self._factory) as session:
            row = session.get(TriggerRow, trigger_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def list_all(self) -> Sequence[Trigger]:
        stmt = select(TriggerRow).order_by(TriggerRow.created_at)
        with session_scope(self._factory) as session:
            payloads = [_trigger_row_to_dict(r) for r in session.execute(stmt).scalars().all()]
        return [decode_trigger(p) for p in payloads]

    def list_active_raw(self) -> Sequence[dict]:
        stmt = (
            select(TriggerRow)
            .where(TriggerRow.is_active.is_(True))
            .order_by(TriggerRow.created_at)
        )
        with session_scope(self._factory) as session:
            return [_trigger_row_to_dict(r) for r in session.execute(stmt).scalars().all()]


def _reading_from_row(row: ReadingRow) -> Reading:
    return Reading(
        sensor_id=row.sensor_id,
        cell_id=row.cell_id,
        metric=row.metric,
        value=row.value,
        recorded_at=row.recorded_at,
    )


class SqlReadingRepository(ReadingRepository):
    """SQL implementation of the reading repository.

    Idempotent: insert_if_absent checks existence before insert, and the
    unique constraint settles races between concurrent writers. Any other
    integrity failure propagates.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory

    def insert_if_absent(self, reading: Reading) -> bool:
        try:
            with session_scope(self._factory) as session:
                if self._exists(session, reading):
                    return False
                session.add(
                    ReadingRow(
                        sensor_id=reading.sensor_id,
                        cell_id=reading.cell_id,
                        metric=reading.metric,
                        value=reading.value,
                        recorded_at=reading.recorded_at,
                    )
                )
        except IntegrityError:
            with session_scope(self._factory) as session:
                if self._exists(session, reading):
                    return False
            raise
        return True

    @staticmethod
    def _exists(session: Session, reading: Reading) -> bool:
        stmt = select(ReadingRow.id).where(
            ReadingRow.sensor_id == reading.sensor_id,
            ReadingRow.metric == reading.metric,
            ReadingRow.recorded_at == reading.recorded_at,
        )
        return session.execute(stmt).first() is not None

    def latest(self, cell_id: str, metric: MetricType) -> Reading | None:
        stmt = (
            select(ReadingRow)
            .where(ReadingRow.cell_id == cell_id, ReadingRow.metric == metric)
            .order_by(ReadingRow.recorded_at.desc(), ReadingRow.id.desc())
            .limit(1)
        )
        with session_scope(self._factory) as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _reading_from_row(row) if row is not None else None

    def latest_at_or_before(
        self, cell_id: str, metric: MetricType, cutoff: datetime
    ) -> Reading | None:
        stmt = (
            select(ReadingRow)
            .where(
                ReadingRow.cell_id == cell_id,
                ReadingRow.metric == metric,
                ReadingRow.recorded_at <= cutoff,
            )
            .order_by(ReadingRow.recorded_at.desc(), ReadingRow.id.desc())
            .limit(1)
        )
        with session_scope(self._factory) as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _reading_from_row(row) if row is not None else None

    def delete_older_than(self, cutoff: datetime) -> int:
        with session_scope(self._factory) as session:
            result = session.execute(delete(ReadingRow).where(ReadingRow.recorded_at < cutoff))
            return result.rowcount or 0


def _label(id_: str | None, name: str | None) -> LabelRef | None:
    if id_ is None or name is None:
        return None
    return LabelRef(id=id_, name=name)


def _alert_from_row(row: AlertRow, user_name: str | None = None) -> AlertInfo:
    return AlertInfo(
        id=row.id,
        trigger_id=row.trigger_id,
        organization_id=row.organization_id,
        site_id=row.site_id,
        compound_id=row.compound_id,
        cell_id=row.cell_id,
        title=row.title,
        description=row.description,
        details=row.details_json,
        severity=row.severity,
        status=row.status,
        metric=row.metric,
        value=row.value,
        threshold_value=row.threshold_value,
        unit=row.unit,
        assignee_id=row.assignee_id,
        started_at=row.started_at,
        resolved_at=row.resolved_at,
        updated_at=row.updated_at,
        site=_label(row.site_id, row.site_name),
        compound=_label(row.compound_id, row.compound_name),
        cell=_label(row.cell_id, row.cell_name),
        user=_label(row.assignee_id, user_name),
        commodity=_label(row.commodity_type_id, row.commodity_type_name),
    )


def _alert_select():  # type: ignore[no-untyped-def]
    return select(AlertRow, UserRow.name).outerjoin(UserRow, UserRow.id == AlertRow.assignee_id)


class SqlAlertRepository(AlertRepository):
    """SQL implementation of the alert repository.

    The partial unique index on (trigger_id, cell_id) over unresolved
    statuses is what makes open-or-retain atomic across processes.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory

    def _one(self, session: Session, alert_id: str) -> AlertInfo | None:
        found = session.execute(_alert_select().where(AlertRow.id == alert_id)).first()
        if found is None:
            return None
        return _alert_from_row(found[0], found[1])

    def get(self, alert_id: str) -> AlertInfo | None:
        with session_scope(self._factory) as session:
            return self._one(session, alert_id)

    def find_active(self, trigger_id: str, cell_id: str) -> AlertInfo | None:
        stmt = (
            _alert_select()
            .where(
                AlertRow.trigger_id == trigger_id,
                AlertRow.cell_id == cell_id,
                AlertRow.status.in_(list(ACTIVE_STATUSES)),
            )
            .limit(1)
        )
        with session_scope(self._factory) as session:
            found = session.execute(stmt).first()
            return _alert_from_row(found[0], found[1]) if found is not None else None

    def latest_for_key(self, trigger_id: str, cell_id: str) -> AlertInfo | None:
        stmt = (
            _alert_select()
            .where(AlertRow.trigger_id == trigger_id, AlertRow.cell_id == cell_id)
            .order_by(AlertRow.started_at.desc(), AlertRow.updated_at.desc())
            .limit(1)
        )
        with session_scope(self._factory) as session:
            found = session.execute(stmt).first()
            return _alert_from_row(found[0], found[1]) if found is not None else None

    def insert(self, alert: AlertInfo, *, reason: str | None = None) -> AlertInfo:
        row = AlertRow(
            id=alert.id,
            trigger_id=alert.trigger_id,
            organization_id=alert.organization_id,
            site_id=alert.site_id,
            site_name=alert.site.name if alert.site else None,
            compound_id=alert.compound_id,
            compound_name=alert.compound.name if alert.compound else None,
            cell_id=alert.cell_id,
            cell_name=alert.cell.name if alert.cell else None,
            commodity_type_id=alert.commodity.id if alert.commodity else None,
            commodity_type_name=alert.commodity.name if alert.commodity else None,
            title=alert.title,
            description=alert.description,
            details_json=alert.details,
            severity=alert.severity,
            status=alert.status,
            metric=alert.metric,
            value=alert.value,
            threshold_value=alert.threshold_value,
            unit=alert.unit,
            assignee_id=alert.assignee_id,
            started_at=alert.started_at,
            resolved_at=alert.resolved_at,
            updated_at=alert.updated_at,
        )
        try:
            with session_scope(self._factory) as session:
                session.add(row)
                session.flush()
                session.add(
                    AlertEventRow(
                        alert_id=row.id,
                        from_status=None,
                        to_status=alert.status,
                        actor_id=None,
                        reason=reason,
                        created_at=alert.started_at,
                    )
                )
        except IntegrityError:
            if (
                alert.trigger_id is not None
                and alert.cell_id is not None
                and self.find_active(alert.trigger_id, alert.cell_id) is not None
            ):
                raise DuplicateOpenAlertError(alert.trigger_id, alert.cell_id) from None
            raise
        return alert

    def compare_and_set_status(
        self,
        alert_id: str,
        expected: AlertStatus,
        new_status: AlertStatus,
        *,
        now: datetime,
        resolved_at: datetime | None,
        actor_id: str | None = None,
        reason: str | None = None,
    ) -> AlertInfo | None:
        stmt = (
            update(AlertRow)
            .where(AlertRow.id == alert_id, AlertRow.status == expected)
            .values(status=new_status, resolved_at=resolved_at, updated_at=now)
        )
        try:
            with session_scope(self._factory) as session:
                result = session.execute(stmt)
                if result.rowcount == 0:
                    return None
                session.add(
                    AlertEventRow(
                        alert_id=alert_id,
                        from_status=expected,
                        to_status=new_status,
                        actor_id=actor_id,
                        reason=reason,
                        created_at=now,
                    )
                )
                session.flush()
                return self._one(session, alert_id)
        except IntegrityError:
            current = self.get(alert_id)
            raise DuplicateOpenAlertError(
                current.trigger_id if current else None,
                current.cell_id if current else None,
            ) from None

    def set_assignee(
        self, alert_id: str, user_id: str | None, *, now: datetime, actor_id: str | None = None
    ) -> AlertInfo | None:
        with session_scope(self._factory) as session:
            row = session.get(AlertRow, alert_id)
            if row is None:
                return None
            row.assignee_id = user_id
            row.updated_at = now
            session.add(
                AlertEventRow(
                    alert_id=alert_id,
                    from_status=row.status,
                    to_status=row.status,
                    actor_id=actor_id,
                    reason=f"assigned to {user_id}" if user_id else "unassigned",
                    created_at=now,
                )
            )
            session.flush()
            return self._one(session, alert_id)

    def query(self, query: AlertQuery) -> Sequence[AlertInfo]:
        stmt = _alert_select()
        if query.organization_id is not None:
            stmt = stmt.where(AlertRow.organization_id == query.organization_id)
        if query.site_id is not None:
            stmt = stmt.where(AlertRow.site_id == query.site_id)
        if query.compound_id is not None:
            stmt = stmt.where(AlertRow.compound_id == query.compound_id)
        if query.cell_id is not None:
            stmt = stmt.where(AlertRow.cell_id == query.cell_id)
        if query.user_id is not None:
            stmt = stmt.where(AlertRow.assignee_id == query.user_id)
        if query.trigger_id is not None:
            stmt = stmt.where(AlertRow.trigger_id == query.trigger_id)
        if query.statuses:
            stmt = stmt.where(AlertRow.status.in_(list(query.statuses)))
        if query.severities:
            stmt = stmt.where(AlertRow.severity.in_(list(query.severities)))
        if query.started_after is not None:
            stmt = stmt.where(AlertRow.started_at >= query.started_after)
        if query.started_before is not None:
            stmt = stmt.where(AlertRow.started_at < query.started_before)
        stmt = stmt.order_by(AlertRow.started_at.desc(), AlertRow.id).limit(query.limit)

        with session_scope(self._factory) as session:
            return [_alert_from_row(row, name) for row, name in session.execute(stmt).all()]

    def history(self, alert_id: str) -> Sequence[AlertEventInfo]:
        stmt = (
            select(AlertEventRow)
            .where(AlertEventRow.alert_id == alert_id)
            .order_by(AlertEventRow.id)
        )
        with session_scope(self._factory) as session:
            return [
                AlertEventInfo(
                    id=r.id,
                    alert_id=r.alert_id,
                    from_status=r.from_status,
                    to_status=r.to_status,
                    actor_id=r.actor_id,
                    reason=r.reason,
                    created_at=r.created_at,
                )
                for r in session.execute(stmt).scalars().all()
            ]
