from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.repositories import (
    LegacyBatchRepository,
    OpeningBalancesRepository,
    PeriodSnapshotRepository,
    ReconciliationSnapshotRepository,
)
from domain.cellar import CellarRecords
from domain.inventory import InventoryAggregator
from domain.period import DateRange, PeriodType
from domain.period_snapshot import BeginningInventory, TTBPeriodSnapshot
from domain.reconciliation import (
    LegacyBatch,
    OpeningBalances,
    ReconciliationResult,
    ReconciliationSnapshot,
    reconcile,
    snapshot_from_result,
)
from domain.tax import RateTable
from domain.tax_class import TaxClass, zero_by_class
from domain.ttb_form import TTBForm512017Data, build_form, resolve_beginning_inventory
from domain.volume import liters_to_gallons

logger = logging.getLogger(__name__)


class CellarRecordsProvider(Protocol):
    def load_records(self) -> CellarRecords: ...


class StaticCellarRecords:
    def __init__(self, records: CellarRecords) -> None:
        self._records = records

    def load_records(self) -> CellarRecords:
        return self._records


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _taxpaid_gallons_before(records: CellarRecords, period_start: date) -> dict[TaxClass, Decimal]:
    """Taxpaid gallons removed earlier in the calendar year, which used up small-producer credit."""
    year_start = date(period_start.year, 1, 1)
    if period_start <= year_start:
        return zero_by_class()
    activity = InventoryAggregator(records).activity(DateRange(start=year_start, end=period_start - timedelta(days=1)))
    return {c: liters_to_gallons(activity.taxpaid(c)) for c in TaxClass}


class TTBReportingService:
    """Query and save operations behind the reconciliation and TTB report screens.

    Every computation is a pure function of the records fetched for the call
    and the explicit dates passed in. ``clock`` only stamps persisted rows.
    """

    def __init__(
        self,
        session: Session,
        *,
        organization_id: str,
        cellar: CellarRecordsProvider,
        rates: RateTable,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session = session
        self._organization_id = organization_id
        self._cellar = cellar
        self._rates = rates
        self._clock = clock
        self._snapshots = ReconciliationSnapshotRepository(session)
        self._legacy = LegacyBatchRepository(session)
        self._opening = OpeningBalancesRepository(session)
        self._periods = PeriodSnapshotRepository(session)

    # -- reconciliation ----------------------------------------------------

    def get_reconciliation_summary(
        self,
        as_of: date,
        *,
        period_start: date | None = None,
        previous_reconciliation_id: int | None = None,
    ) -> ReconciliationResult:
        previous_on_hand = None
        if previous_reconciliation_id is not None:
            previous = self._snapshots.require(previous_reconciliation_id)
            previous_on_hand = previous.on_hand_end
            if period_start is None:
                period_start = previous.reconciliation_date + timedelta(days=1)
        return reconcile(
            self._cellar.load_records(),
            self._opening.get(self._organization_id),
            self._legacy.list(self._organization_id),
            as_of=as_of,
            period_start=period_start,
            previous_on_hand=previous_on_hand,
        )

    def get_last_reconciliation(self) -> ReconciliationSnapshot | None:
        return self._snapshots.latest(self._organization_id)

    def get_reconciliation_history(self) -> list[ReconciliationSnapshot]:
        return self._snapshots.list(self._organization_id)

    def save_reconciliation(
        self,
        *,
        reconciliation_date: date,
        name: str | None = None,
        notes: str | None = None,
        period_start_date: date | None = None,
        period_end_date: date | None = None,
        previous_reconciliation_id: int | None = None,
        summary: ReconciliationResult | None = None,
    ) -> int:
        """Persist a full reconciliation snapshot in one transaction and return its id.

        A caller-supplied ``summary`` must equal the one computed for the same
        date, period start and previous reconciliation.
        """
        if summary is not None and summary.as_of != reconciliation_date:
            raise ValueError(f"Summary is as of {summary.as_of}, not the reconciliation date {reconciliation_date}")
        if previous_reconciliation_id is not None and period_start_date is None:
            previous = self._snapshots.require(previous_reconciliation_id)
            period_start_date = previous.reconciliation_date + timedelta(days=1)
        computed = self.get_reconciliation_summary(
            reconciliation_date,
            period_start=period_start_date,
            previous_reconciliation_id=previous_reconciliation_id,
        )
        if summary is not None and summary != computed:
            raise ValueError(
                f"Summary as of {reconciliation_date} does not match the reconciliation computed "
                f"from period start {period_start_date} and previous reconciliation {previous_reconciliation_id}"
            )
        summary = computed

        snapshot = snapshot_from_result(
            summary,
            organization_id=self._organization_id,
            name=name,
            notes=notes,
            period_start_date=period_start_date,
            period_end_date=period_end_date or reconciliation_date,
            previous_reconciliation_id=previous_reconciliation_id,
        )
        try:
            saved = self._snapshots.create(snapshot, created_at=self._clock())
        except SQLAlchemyError:
            self._session.rollback()
            raise
        assert saved.id is not None
        logger.info(
            "Saved reconciliation %s as of %s (difference %s, previous %s)",
            saved.id,
            reconciliation_date,
            saved.difference,
            previous_reconciliation_id,
        )
        return saved.id

    # -- opening balances and legacy batches --------------------------------

    def get_opening_balances(self) -> OpeningBalances:
        return self._opening.get(self._organization_id)

    def update_opening_balances(self, balances: OpeningBalances) -> OpeningBalances:
        return self._opening.upsert(self._organization_id, balances)

    def list_legacy_batches(self) -> list[LegacyBatch]:
        return self._legacy.list(self._organization_id)

    def create_legacy_batch(self, legacy: LegacyBatch) -> LegacyBatch:
        created = self._legacy.create(self._organization_id, legacy)
        logger.info("Created legacy batch %s (%s, %s L)", created.id, created.class_key, created.volume_liters)
        return created

    def update_legacy_batch(self, legacy: LegacyBatch) -> LegacyBatch:
        return self._legacy.update(self._organization_id, legacy)

    def delete_legacy_batch(self, legacy_id: int) -> None:
        self._legacy.delete(self._organization_id, legacy_id)

    # -- TTB form and period snapshots --------------------------------------

    def get_beginning_inventory(self, period_start: date) -> BeginningInventory:
        return resolve_beginning_inventory(
            period_start,
            InventoryAggregator(self._cellar.load_records()),
            latest_finalized=self._periods.latest_finalized_before(self._organization_id, period_start),
            opening=self._opening.get(self._organization_id),
        )

    def build_ttb_form_512017(self, period_start: date, period_end: date) -> TTBForm512017Data:
        period = DateRange(start=period_start, end=period_end)
        records = self._cellar.load_records()
        return build_form(
            records,
            period,
            beginning=self.get_beginning_inventory(period_start),
            rates=self._rates,
            prior_credit_gallons_by_class=_taxpaid_gallons_before(records, period_start),
        )

    def save_period_snapshot(
        self,
        period_type: PeriodType,
        year: int,
        number: int | None = None,
        *,
        form: TTBForm512017Data | None = None,
    ) -> TTBPeriodSnapshot:
        period = DateRange.for_period(period_type, year, number)
        if form is None:
            form = self.build_ttb_form_512017(period.start, period.end)
        elif form.period != period:
            raise ValueError(f"Form covers {form.period.start}..{form.period.end}, not {period.start}..{period.end}")
        snapshot = TTBPeriodSnapshot(
            organization_id=self._organization_id,
            period_type=period_type,
            year=year,
            number=number,
            period=period,
            ending_bulk=form.ending_bulk(),
            ending_bottled=form.ending_bottled(),
            form=form.model_dump(mode="json"),
        )
        saved = self._periods.save_draft(snapshot)
        logger.info("Saved draft period snapshot %s for %s..%s", saved.id, period.start, period.end)
        return saved

    def finalize_period_snapshot(self, snapshot_id: int) -> TTBPeriodSnapshot:
        finalized = self._periods.finalize(snapshot_id, finalized_at=self._clock())
        logger.info("Finalized period snapshot %s", snapshot_id)
        return finalized

    def list_period_snapshots(self) -> list[TTBPeriodSnapshot]:
        return self._periods.list(self._organization_id)


__all__ = ["CellarRecordsProvider", "StaticCellarRecords", "TTBReportingService"]
