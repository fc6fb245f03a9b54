from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from db.repositories import (
    LegacyBatchRepository,
    OpeningBalancesRepository,
    PeriodSnapshotRepository,
    ReconciliationSnapshotRepository,
)
from domain.cellar import CellarRecords
from domain.errors import PeriodSnapshotFinalizedError, SnapshotNotFoundError
from domain.period import DateRange, PeriodType
from domain.period_snapshot import PeriodSnapshotStatus, TTBPeriodSnapshot
from domain.reconciliation import (
    LegacyBatch,
    OpeningBalances,
    ReconciliationSnapshot,
    reconcile,
    snapshot_from_result,
)
from domain.tax_class import SpiritsClass, TaxClass
from tests.helpers.cellar import gal, make_batch

CREATED_AT = datetime(2024, 4, 2, 8, 30, 0, tzinfo=timezone.utc)


def _snapshot(as_of: date, *, previous_id: int | None = None, organization_id: str = "org-1") -> ReconciliationSnapshot:
    records = CellarRecords(batches=[make_batch("b1", gallons=950, start=date(2023, 12, 31))])
    opening = OpeningBalances(balance_date=date(2023, 12, 31), bulk={TaxClass.HARD_CIDER: Decimal(1000)})
    result = reconcile(records, opening, [], as_of=as_of)
    return snapshot_from_result(
        result,
        organization_id=organization_id,
        name=f"As of {as_of}",
        period_end_date=as_of,
        previous_reconciliation_id=previous_id,
    )


@pytest.fixture()
def snapshots(test_session: Session) -> ReconciliationSnapshotRepository:
    return ReconciliationSnapshotRepository(test_session)


@pytest.fixture()
def legacy_repo(test_session: Session) -> LegacyBatchRepository:
    return LegacyBatchRepository(test_session)


@pytest.fixture()
def periods(test_session: Session) -> PeriodSnapshotRepository:
    return PeriodSnapshotRepository(test_session)


def test_create_and_get_reconciliation_snapshot(snapshots: ReconciliationSnapshotRepository) -> None:
    saved = snapshots.create(_snapshot(date(2024, 3, 31)), created_at=CREATED_AT)

    assert saved.id is not None
    fetched = snapshots.get(saved.id)
    assert fetched is not None
    assert fetched.reconciliation_date == date(2024, 3, 31)
    assert fetched.opening_balance_date == date(2023, 12, 31)
    assert fetched.ttb_balance == Decimal(1000)
    assert fetched.current_inventory == Decimal(950)
    assert fetched.difference == Decimal(50)
    assert not fetched.is_reconciled
    assert fetched.on_hand_end[TaxClass.HARD_CIDER.value] == Decimal(950)
    assert fetched.created_at == CREATED_AT
    assert fetched.summary is not None
    assert fetched.summary.row(TaxClass.HARD_CIDER.value).difference == Decimal(50)


def test_require_missing_snapshot(snapshots: ReconciliationSnapshotRepository) -> None:
    assert snapshots.get(42) is None
    with pytest.raises(SnapshotNotFoundError) as excinfo:
        snapshots.require(42)
    assert excinfo.value.context == {"snapshot_id": 42}


def test_latest_and_history_order(snapshots: ReconciliationSnapshotRepository) -> None:
    assert snapshots.latest("org-1") is None

    first = snapshots.create(_snapshot(date(2024, 3, 31)), created_at=CREATED_AT)
    second = snapshots.create(_snapshot(date(2024, 6, 30), previous_id=first.id), created_at=CREATED_AT)
    snapshots.create(_snapshot(date(2024, 9, 30), organization_id="org-2"), created_at=CREATED_AT)

    latest = snapshots.latest("org-1")
    assert latest is not None
    assert latest.id == second.id
    assert latest.previous_reconciliation_id == first.id
    assert [s.id for s in snapshots.list("org-1")] == [second.id, first.id]


def test_legacy_batch_lifecycle(legacy_repo: LegacyBatchRepository) -> None:
    created = legacy_repo.create(
        "org-1",
        LegacyBatch(name="Barrel 3", class_key="hardCider", volume_liters=gal(45), effective_date=date(2023, 12, 31)),
    )
    legacy_repo.create(
        "org-1",
        LegacyBatch(
            name="Old brandy",
            class_key=SpiritsClass.APPLE_BRANDY.value,
            volume_liters=gal(5),
            effective_date=date(2023, 6, 30),
        ),
    )

    assert created.id is not None
    assert [b.name for b in legacy_repo.list("org-1")] == ["Old brandy", "Barrel 3"]
    assert legacy_repo.list("org-2") == []

    updated = legacy_repo.update("org-1", created.model_copy(update={"volume_liters": gal(50)}))
    assert updated.volume_liters == gal(50)

    legacy_repo.delete("org-1", created.id)
    assert [b.name for b in legacy_repo.list("org-1")] == ["Old brandy"]
    assert len(legacy_repo.list("org-1", include_deleted=True)) == 2


def test_legacy_batch_scoped_to_organization(legacy_repo: LegacyBatchRepository) -> None:
    created = legacy_repo.create(
        "org-1",
        LegacyBatch(name="Barrel 3", class_key="hardCider", volume_liters=gal(45), effective_date=date(2023, 12, 31)),
    )
    assert created.id is not None

    with pytest.raises(KeyError):
        legacy_repo.delete("org-2", created.id)
    with pytest.raises(ValueError):
        legacy_repo.update("org-1", created.model_copy(update={"id": None}))


def test_opening_balances_upsert(test_session: Session) -> None:
    repo = OpeningBalancesRepository(test_session)
    assert not repo.get("org-1").has_balances

    repo.upsert(
        "org-1",
        OpeningBalances(
            balance_date=date(2023, 12, 31),
            bulk={TaxClass.HARD_CIDER: Decimal("1000.5")},
            spirits={SpiritsClass.APPLE_BRANDY: Decimal(20)},
            notes="From the December report",
        ),
    )
    updated = repo.upsert(
        "org-1",
        OpeningBalances(balance_date=date(2023, 12, 31), bottled={TaxClass.SPARKLING_WINE: Decimal(12)}),
    )

    assert updated.balance_date == date(2023, 12, 31)
    assert updated.bulk[TaxClass.HARD_CIDER] == Decimal(0)
    assert updated.bottled[TaxClass.SPARKLING_WINE] == Decimal(12)
    assert updated.notes is None
    assert repo.get("org-2").balance_date is None


def _period_snapshot(month: int, bulk: str = "100") -> TTBPeriodSnapshot:
    return TTBPeriodSnapshot(
        organization_id="org-1",
        period_type=PeriodType.MONTHLY,
        year=2024,
        number=month,
        period=DateRange.for_period(PeriodType.MONTHLY, 2024, month),
        ending_bulk={TaxClass.HARD_CIDER: Decimal(bulk)},
        form={"note": f"month {month}"},
    )


def test_period_snapshot_draft_is_overwritten(periods: PeriodSnapshotRepository) -> None:
    first = periods.save_draft(_period_snapshot(1))
    second = periods.save_draft(_period_snapshot(1, bulk="90"))

    assert second.id == first.id
    assert second.status == PeriodSnapshotStatus.DRAFT
    assert second.ending_bulk[TaxClass.HARD_CIDER] == Decimal(90)
    assert second.form == {"note": "month 1"}
    assert periods.find("org-1", PeriodType.MONTHLY, date(2024, 1, 1)) == second


def test_finalized_period_snapshot_is_immutable(periods: PeriodSnapshotRepository) -> None:
    draft = periods.save_draft(_period_snapshot(1))
    assert draft.id is not None

    finalized = periods.finalize(draft.id, finalized_at=CREATED_AT)
    assert finalized.is_finalized
    assert finalized.finalized_at == CREATED_AT

    with pytest.raises(PeriodSnapshotFinalizedError):
        periods.finalize(draft.id, finalized_at=CREATED_AT)
    with pytest.raises(PeriodSnapshotFinalizedError):
        periods.save_draft(_period_snapshot(1, bulk="1"))
    with pytest.raises(SnapshotNotFoundError):
        periods.finalize(999, finalized_at=CREATED_AT)


def test_latest_finalized_before(periods: PeriodSnapshotRepository) -> None:
    january = periods.save_draft(_period_snapshot(1))
    february = periods.save_draft(_period_snapshot(2, bulk="80"))
    periods.save_draft(_period_snapshot(3))
    assert january.id is not None and february.id is not None
    periods.finalize(january.id, finalized_at=CREATED_AT)
    periods.finalize(february.id, finalized_at=CREATED_AT)

    assert periods.latest_finalized_before("org-1", date(2024, 2, 1)).id == january.id
    latest = periods.latest_finalized_before("org-1", date(2024, 4, 1))
    assert latest is not None
    assert latest.id == february.id
    assert latest.ending_bulk[TaxClass.HARD_CIDER] == Decimal(80)
    assert periods.latest_finalized_before("org-1", date(2024, 1, 31)) is None
    assert [p.number for p in periods.list("org-1")] == [1, 2, 3]
