from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import models
from domain.errors import PeriodSnapshotFinalizedError, SnapshotNotFoundError
from domain.period import DateRange, PeriodType
from domain.period_snapshot import PeriodSnapshotStatus, TTBPeriodSnapshot
from domain.reconciliation import LegacyBatch, OpeningBalances, ReconciliationSnapshot


def _utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ReconciliationSnapshotRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, snapshot: ReconciliationSnapshot, *, created_at: datetime) -> ReconciliationSnapshot:
        payload = snapshot.model_dump(mode="json", include={"on_hand_end", "summary"})
        orm_snapshot = models.ReconciliationSnapshotOrm(
            organization_id=snapshot.organization_id,
            reconciliation_date=snapshot.reconciliation_date,
            opening_balance_date=snapshot.opening_balance_date,
            name=snapshot.name,
            notes=snapshot.notes,
            period_start_date=snapshot.period_start_date,
            period_end_date=snapshot.period_end_date,
            previous_reconciliation_id=snapshot.previous_reconciliation_id,
            ttb_balance=snapshot.ttb_balance,
            current_inventory=snapshot.current_inventory,
            removals=snapshot.removals,
            legacy_batches=snapshot.legacy_batches,
            difference=snapshot.difference,
            is_reconciled=snapshot.is_reconciled,
            schema_version=snapshot.schema_version,
            payload=json.dumps(payload),
            created_at=created_at,
        )

        self._session.add(orm_snapshot)
        self._session.commit()
        self._session.refresh(orm_snapshot)
        return self._to_domain(orm_snapshot)

    def get(self, snapshot_id: int) -> ReconciliationSnapshot | None:
        orm_snapshot = self._session.get(models.ReconciliationSnapshotOrm, snapshot_id)
        if orm_snapshot is None:
            return None
        return self._to_domain(orm_snapshot)

    def require(self, snapshot_id: int) -> ReconciliationSnapshot:
        snapshot = self.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(f"Reconciliation snapshot {snapshot_id} not found", snapshot_id=snapshot_id)
        return snapshot

    def latest(self, organization_id: str) -> ReconciliationSnapshot | None:
        stmt = (
            select(models.ReconciliationSnapshotOrm)
            .where(models.ReconciliationSnapshotOrm.organization_id == organization_id)
            .order_by(
                models.ReconciliationSnapshotOrm.reconciliation_date.desc(),
                models.ReconciliationSnapshotOrm.id.desc(),
            )
            .limit(1)
        )
        orm_snapshot = self._session.scalar(stmt)
        if orm_snapshot is None:
            return None
        return self._to_domain(orm_snapshot)

    def list(self, organization_id: str) -> list[ReconciliationSnapshot]:
        stmt = (
            select(models.ReconciliationSnapshotOrm)
            .where(models.ReconciliationSnapshotOrm.organization_id == organization_id)
            .order_by(
                models.ReconciliationSnapshotOrm.reconciliation_date.desc(),
                models.ReconciliationSnapshotOrm.id.desc(),
            )
        )
        return [self._to_domain(row) for row in self._session.execute(stmt).scalars().all()]

    @staticmethod
    def _to_domain(orm_snapshot: models.ReconciliationSnapshotOrm) -> ReconciliationSnapshot:
        payload: dict[str, Any] = json.loads(orm_snapshot.payload or "{}")
        return ReconciliationSnapshot(
            id=orm_snapshot.id,
            organization_id=orm_snapshot.organization_id,
            reconciliation_date=orm_snapshot.reconciliation_date,
            opening_balance_date=orm_snapshot.opening_balance_date,
            name=orm_snapshot.name,
            notes=orm_snapshot.notes,
            period_start_date=orm_snapshot.period_start_date,
            period_end_date=orm_snapshot.period_end_date,
            previous_reconciliation_id=orm_snapshot.previous_reconciliation_id,
            ttb_balance=orm_snapshot.ttb_balance,
            current_inventory=orm_snapshot.current_inventory,
            removals=orm_snapshot.removals,
            legacy_batches=orm_snapshot.legacy_batches,
            difference=orm_snapshot.difference,
            is_reconciled=orm_snapshot.is_reconciled,
            on_hand_end=payload.get("on_hand_end") or {},
            summary=payload.get("summary"),
            schema_version=orm_snapshot.schema_version,
            created_at=_utc(orm_snapshot.created_at),
        )


class LegacyBatchRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, organization_id: str, legacy: LegacyBatch) -> LegacyBatch:
        orm_legacy = models.LegacyBatchOrm(
            organization_id=organization_id,
            name=legacy.name,
            class_key=legacy.class_key,
            volume_liters=legacy.volume_liters,
            effective_date=legacy.effective_date,
            notes=legacy.notes,
            deleted=legacy.deleted,
        )

        self._session.add(orm_legacy)
        self._session.commit()
        self._session.refresh(orm_legacy)
        return self._to_domain(orm_legacy)

    def update(self, organization_id: str, legacy: LegacyBatch) -> LegacyBatch:
        if legacy.id is None:
            raise ValueError("LegacyBatch.id is required for update")
        orm_legacy = self._require_orm(organization_id, legacy.id)
        orm_legacy.name = legacy.name
        orm_legacy.class_key = legacy.class_key
        orm_legacy.volume_liters = legacy.volume_liters
        orm_legacy.effective_date = legacy.effective_date
        orm_legacy.notes = legacy.notes

        self._session.commit()
        self._session.refresh(orm_legacy)
        return self._to_domain(orm_legacy)

    def delete(self, organization_id: str, legacy_id: int) -> None:
        orm_legacy = self._require_orm(organization_id, legacy_id)
        orm_legacy.deleted = True
        self._session.commit()

    def list(self, organization_id: str, *, include_deleted: bool = False) -> list[LegacyBatch]:
        stmt = select(models.LegacyBatchOrm).where(models.LegacyBatchOrm.organization_id == organization_id)
        if not include_deleted:
            stmt = stmt.where(models.LegacyBatchOrm.deleted.is_(False))
        stmt = stmt.order_by(models.LegacyBatchOrm.effective_date.asc(), models.LegacyBatchOrm.id.asc())
        return [self._to_domain(row) for row in self._session.execute(stmt).scalars().all()]

    def _require_orm(self, organization_id: str, legacy_id: int) -> models.LegacyBatchOrm:
        orm_legacy = self._session.get(models.LegacyBatchOrm, legacy_id)
        if orm_legacy is None or orm_legacy.organization_id != organization_id:
            raise KeyError(f"Legacy batch {legacy_id} not found")
        return orm_legacy

    @staticmethod
    def _to_domain(orm_legacy: models.LegacyBatchOrm) -> LegacyBatch:
        return LegacyBatch(
            id=orm_legacy.id,
            name=orm_legacy.name,
            class_key=orm_legacy.class_key,
            volume_liters=orm_legacy.volume_liters,
            effective_date=orm_legacy.effective_date,
            notes=orm_legacy.notes,
            deleted=orm_legacy.deleted,
        )


class OpeningBalancesRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, organization_id: str) -> OpeningBalances:
        orm_balances = self._session.get(models.OpeningBalancesOrm, organization_id)
        if orm_balances is None:
            return OpeningBalances()
        balances: dict[str, Any] = json.loads(orm_balances.balances or "{}")
        return OpeningBalances(balance_date=orm_balances.balance_date, notes=orm_balances.notes, **balances)

    def upsert(self, organization_id: str, balances: OpeningBalances) -> OpeningBalances:
        orm_balances = self._session.get(models.OpeningBalancesOrm, organization_id)
        if orm_balances is None:
            orm_balances = models.OpeningBalancesOrm(organization_id=organization_id)
            self._session.add(orm_balances)
        orm_balances.balance_date = balances.balance_date
        orm_balances.notes = balances.notes
        orm_balances.balances = json.dumps(balances.model_dump(mode="json", include={"bulk", "bottled", "spirits"}))

        self._session.commit()
        return self.get(organization_id)


class PeriodSnapshotRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def find(self, organization_id: str, period_type: PeriodType, period_start: date) -> TTBPeriodSnapshot | None:
        orm_snapshot = self._find_orm(organization_id, period_type, period_start)
        if orm_snapshot is None:
            return None
        return self._to_domain(orm_snapshot)

    def save_draft(self, snapshot: TTBPeriodSnapshot) -> TTBPeriodSnapshot:
        """Create the draft for a period or overwrite the existing draft."""
        orm_snapshot = self._find_orm(snapshot.organization_id, snapshot.period_type, snapshot.period.start)
        if orm_snapshot is None:
            orm_snapshot = models.TTBPeriodSnapshotOrm(
                organization_id=snapshot.organization_id,
                period_type=snapshot.period_type.value,
                period_start=snapshot.period.start,
            )
            self._session.add(orm_snapshot)
        elif orm_snapshot.status == PeriodSnapshotStatus.FINALIZED.value:
            raise PeriodSnapshotFinalizedError(
                f"Period snapshot {orm_snapshot.id} is finalized and cannot be modified",
                snapshot_id=orm_snapshot.id,
                period_start=snapshot.period.start.isoformat(),
            )
        orm_snapshot.year = snapshot.year
        orm_snapshot.number = snapshot.number
        orm_snapshot.period_end = snapshot.period.end
        orm_snapshot.status = PeriodSnapshotStatus.DRAFT.value
        orm_snapshot.ending = json.dumps(
            snapshot.model_dump(mode="json", include={"ending_bulk", "ending_bottled"})
        )
        orm_snapshot.form = json.dumps(snapshot.form)

        self._session.commit()
        self._session.refresh(orm_snapshot)
        return self._to_domain(orm_snapshot)

    def finalize(self, snapshot_id: int, *, finalized_at: datetime) -> TTBPeriodSnapshot:
        orm_snapshot = self._session.get(models.TTBPeriodSnapshotOrm, snapshot_id)
        if orm_snapshot is None:
            raise SnapshotNotFoundError(f"Period snapshot {snapshot_id} not found", snapshot_id=snapshot_id)
        if orm_snapshot.status == PeriodSnapshotStatus.FINALIZED.value:
            raise PeriodSnapshotFinalizedError(
                f"Period snapshot {snapshot_id} is already finalized", snapshot_id=snapshot_id
            )
        orm_snapshot.status = PeriodSnapshotStatus.FINALIZED.value
        orm_snapshot.finalized_at = finalized_at

        self._session.commit()
        self._session.refresh(orm_snapshot)
        return self._to_domain(orm_snapshot)

    def latest_finalized_before(self, organization_id: str, day: date) -> TTBPeriodSnapshot | None:
        stmt = (
            select(models.TTBPeriodSnapshotOrm)
            .where(
                models.TTBPeriodSnapshotOrm.organization_id == organization_id,
                models.TTBPeriodSnapshotOrm.status == PeriodSnapshotStatus.FINALIZED.value,
                models.TTBPeriodSnapshotOrm.period_end < day,
            )
            .order_by(models.TTBPeriodSnapshotOrm.period_end.desc())
            .limit(1)
        )
        orm_snapshot = self._session.scalar(stmt)
        if orm_snapshot is None:
            return None
        return self._to_domain(orm_snapshot)

    def list(self, organization_id: str) -> list[TTBPeriodSnapshot]:
        stmt = (
            select(models.TTBPeriodSnapshotOrm)
            .where(models.TTBPeriodSnapshotOrm.organization_id == organization_id)
            .order_by(models.TTBPeriodSnapshotOrm.period_start.asc())
        )
        return [self._to_domain(row) for row in self._session.execute(stmt).scalars().all()]

    def _find_orm(
        self, organization_id: str, period_type: PeriodType, period_start: date
    ) -> models.TTBPeriodSnapshotOrm | None:
        stmt = select(models.TTBPeriodSnapshotOrm).where(
            models.TTBPeriodSnapshotOrm.organization_id == organization_id,
            models.TTBPeriodSnapshotOrm.period_type == period_type.value,
            models.TTBPeriodSnapshotOrm.period_start == period_start,
        )
        return self._session.scalar(stmt)

    @staticmethod
    def _to_domain(orm_snapshot: models.TTBPeriodSnapshotOrm) -> TTBPeriodSnapshot:
        ending: dict[str, dict[str, str]] = json.loads(orm_snapshot.ending or "{}")
        return TTBPeriodSnapshot(
            id=orm_snapshot.id,
            organization_id=orm_snapshot.organization_id,
            period_type=PeriodType(orm_snapshot.period_type),
            year=orm_snapshot.year,
            number=orm_snapshot.number,
            period=DateRange(start=orm_snapshot.period_start, end=orm_snapshot.period_end),
            status=PeriodSnapshotStatus(orm_snapshot.status),
            ending_bulk={key: Decimal(value) for key, value in ending.get("ending_bulk", {}).items()},
            ending_bottled={key: Decimal(value) for key, value in ending.get("ending_bottled", {}).items()},
            form=json.loads(orm_snapshot.form or "{}"),
            finalized_at=_utc(orm_snapshot.finalized_at),
        )
