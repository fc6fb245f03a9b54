from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from domain.cellar import CellarRecords
from domain.errors import InvalidVolumeError
from domain.reconciliation import (
    LegacyBatch,
    OpeningBalances,
    ReconciliationFigures,
    ReconciliationGuidance,
    RowType,
    reconcile,
    snapshot_from_result,
)
from domain.tax_class import SpiritsClass, TaxClass
from tests.helpers.cellar import gal, make_batch, make_removal, make_run

OPENING_DATE = date(2023, 12, 31)


@pytest.fixture(scope="function")
def opening() -> OpeningBalances:
    return OpeningBalances(balance_date=OPENING_DATE, bulk={TaxClass.HARD_CIDER: Decimal(1000)})


@pytest.fixture(scope="function")
def records() -> CellarRecords:
    return CellarRecords(
        batches=[make_batch("b1", gallons=950, start=OPENING_DATE)],
        packaging_runs=[make_run("r1", "b1", gallons=350, on=date(2024, 2, 1))],
        removals=[make_removal("s1", gallons=200, on=date(2024, 3, 1), run_id="r1")],
    )


def _legacy(gallons: int, class_key: str = TaxClass.HARD_CIDER.value) -> LegacyBatch:
    return LegacyBatch(name="Pre-tracking tank", class_key=class_key, volume_liters=gal(gallons), effective_date=OPENING_DATE)


def test_ttb_exceeding_system_suggests_legacy_batches(records: CellarRecords, opening: OpeningBalances) -> None:
    result = reconcile(records, opening, [_legacy(45)], as_of=date(2024, 3, 31))

    row = result.row(TaxClass.HARD_CIDER.value)
    assert row.ttb_total == Decimal(1000)
    assert row.current_inventory == Decimal(750)
    assert row.removals == Decimal(200)
    assert row.legacy_batches == Decimal(45)
    assert row.difference == Decimal(5)
    assert not row.is_reconciled
    assert row.guidance == ReconciliationGuidance.TTB_EXCEEDS_SYSTEM

    assert result.totals.difference == Decimal(5)
    assert result.has_opening_balances
    assert not result.is_initial_reconciliation
    assert result.tax_classes == [TaxClass.HARD_CIDER]
    assert result.breakdown.bulk_inventory == Decimal(600)
    assert result.breakdown.packaged_inventory == Decimal(150)
    assert result.breakdown.sales == Decimal(200)
    assert [d.batch_number for d in result.batch_details_by_tax_class[TaxClass.HARD_CIDER]] == ["B1"]


def test_legacy_batch_closes_the_gap(records: CellarRecords, opening: OpeningBalances) -> None:
    result = reconcile(records, opening, [_legacy(50)], as_of=date(2024, 3, 31))

    assert result.totals.difference == Decimal(0)
    assert result.totals.is_reconciled
    assert result.totals.guidance == ReconciliationGuidance.RECONCILED


def test_legacy_batch_counts_from_its_effective_date(records: CellarRecords, opening: OpeningBalances) -> None:
    late = LegacyBatch(
        name="Found in barn", class_key="hardCider", volume_liters=gal(50), effective_date=date(2024, 6, 1)
    )
    deleted = _legacy(50).model_copy(update={"deleted": True})

    result = reconcile(records, opening, [late, deleted], as_of=date(2024, 3, 31))

    assert result.totals.legacy_batches == Decimal(0)
    assert result.totals.difference == Decimal(50)


def test_system_exceeding_ttb(records: CellarRecords) -> None:
    opening = OpeningBalances(balance_date=OPENING_DATE, bulk={TaxClass.HARD_CIDER: Decimal(900)})

    result = reconcile(records, opening, [], as_of=date(2024, 3, 31))

    assert result.totals.difference == Decimal(-50)
    assert result.totals.guidance == ReconciliationGuidance.SYSTEM_EXCEEDS_TTB


def test_initial_reconciliation_on_opening_date(records: CellarRecords, opening: OpeningBalances) -> None:
    result = reconcile(records, opening, [_legacy(50)], as_of=date(2024, 1, 1))

    assert result.is_initial_reconciliation
    assert result.totals.current_inventory == Decimal(950)
    assert result.totals.is_reconciled


def test_without_opening_balances_production_is_the_reference() -> None:
    records = CellarRecords(batches=[make_batch("b1", gallons=400, start=date(2024, 2, 1))])

    result = reconcile(records, OpeningBalances(), [], as_of=date(2024, 3, 31))

    assert not result.has_opening_balances
    assert result.totals.ttb_total == Decimal(400)
    assert result.totals.is_reconciled


def test_spirits_rows_reconcile_against_legacy() -> None:
    opening = OpeningBalances(balance_date=OPENING_DATE, spirits={SpiritsClass.APPLE_BRANDY: Decimal(20)})

    result = reconcile(
        CellarRecords(), opening, [_legacy(20, SpiritsClass.APPLE_BRANDY.value)], as_of=date(2024, 3, 31)
    )

    row = result.row(SpiritsClass.APPLE_BRANDY.value)
    assert row.row_type == RowType.SPIRITS
    assert row.ttb_total == Decimal(20)
    assert row.difference == Decimal(0)
    assert result.row(SpiritsClass.GRAPE_SPIRITS.value).ttb_total == Decimal(0)


def test_chained_period_carries_on_hand_forward(records: CellarRecords, opening: OpeningBalances) -> None:
    legacy = [_legacy(50)]
    first = reconcile(records, opening, legacy, as_of=date(2024, 3, 31))
    assert first.on_hand_end()[TaxClass.HARD_CIDER.value] == Decimal(800)

    second_records = records.model_copy(
        update={"removals": [*records.removals, make_removal("s2", gallons=100, on=date(2024, 5, 1), run_id="r1")]}
    )
    second = reconcile(
        second_records,
        opening,
        legacy,
        as_of=date(2024, 6, 30),
        period_start=date(2024, 4, 1),
        previous_on_hand=first.on_hand_end(),
    )

    row = second.row(TaxClass.HARD_CIDER.value)
    assert row.ttb_total == Decimal(800)
    assert row.current_inventory == Decimal(650)
    assert row.removals == Decimal(100)
    assert row.difference == Decimal(0)


def test_unchained_period_start_keeps_the_opening_window(records: CellarRecords, opening: OpeningBalances) -> None:
    whole = reconcile(records, opening, [_legacy(50)], as_of=date(2024, 6, 30))
    windowed = reconcile(records, opening, [_legacy(50)], as_of=date(2024, 6, 30), period_start=date(2024, 3, 2))

    row = windowed.row(TaxClass.HARD_CIDER.value)
    assert row.removals == Decimal(200)
    assert row.difference == Decimal(0)
    assert windowed.totals == whole.totals
    assert windowed.period_start == date(2024, 3, 2)


def test_chaining_requires_period_start(records: CellarRecords, opening: OpeningBalances) -> None:
    with pytest.raises(ValueError):
        reconcile(records, opening, [], as_of=date(2024, 6, 30), previous_on_hand={"hardCider": Decimal(800)})


@pytest.mark.parametrize(
    ("ttb_total", "reconciled", "guidance"),
    [
        (Decimal("100.49"), True, ReconciliationGuidance.RECONCILED),
        (Decimal("100.5"), False, ReconciliationGuidance.TTB_EXCEEDS_SYSTEM),
        (Decimal("99.51"), True, ReconciliationGuidance.RECONCILED),
        (Decimal("99.5"), False, ReconciliationGuidance.SYSTEM_EXCEEDS_TTB),
    ],
)
def test_tolerance_is_strictly_below_half_a_gallon(
    ttb_total: Decimal, reconciled: bool, guidance: ReconciliationGuidance
) -> None:
    figures = ReconciliationFigures(ttb_total=ttb_total, current_inventory=Decimal(100))

    assert figures.is_reconciled is reconciled
    assert figures.guidance == guidance


gallon_figures = st.decimals(min_value=0, max_value=100000, places=2, allow_nan=False, allow_infinity=False)


@given(gallon_figures, gallon_figures, gallon_figures, gallon_figures)
def test_difference_is_the_conservation_residual(
    ttb_total: Decimal, inventory: Decimal, removals: Decimal, legacy: Decimal
) -> None:
    figures = ReconciliationFigures(
        ttb_total=ttb_total, current_inventory=inventory, removals=removals, legacy_batches=legacy
    )

    assert figures.difference + inventory + removals + legacy == ttb_total


@given(
    produced=st.integers(min_value=1, max_value=5000),
    taken_pct=st.integers(min_value=0, max_value=100),
    loss_pct=st.integers(min_value=0, max_value=10),
    sold_pct=st.integers(min_value=0, max_value=100),
)
def test_tracked_production_always_reconciles(produced: int, taken_pct: int, loss_pct: int, sold_pct: int) -> None:
    taken = produced * taken_pct // 100
    loss = taken * loss_pct // 100
    sold = (taken - loss) * sold_pct // 100
    records = CellarRecords(
        batches=[make_batch("b1", gallons=produced, start=date(2024, 1, 1))],
        packaging_runs=[make_run("r1", "b1", gallons=taken, on=date(2024, 1, 10), loss=loss)],
        removals=[make_removal("s1", gallons=sold, on=date(2024, 1, 20), run_id="r1")],
    )

    result = reconcile(records, OpeningBalances(), [], as_of=date(2024, 1, 31))

    assert result.totals.ttb_total == Decimal(produced)
    assert result.totals.difference == Decimal(0)
    assert result.totals.is_reconciled


def test_opening_balances_fill_missing_classes_and_reject_negatives() -> None:
    balances = OpeningBalances(balance_date=OPENING_DATE, bottled={TaxClass.SPARKLING_WINE: Decimal(12)})

    assert balances.bulk[TaxClass.HARD_CIDER] == Decimal(0)
    assert balances.total(TaxClass.SPARKLING_WINE) == Decimal(12)
    assert balances.spirits[SpiritsClass.GRAPE_SPIRITS] == Decimal(0)

    with pytest.raises(InvalidVolumeError):
        OpeningBalances(balance_date=OPENING_DATE, bulk={TaxClass.HARD_CIDER: Decimal(-1)})


def test_legacy_batch_requires_a_known_class() -> None:
    with pytest.raises(ValueError):
        LegacyBatch(name="x", class_key="mead", volume_liters=Decimal(1), effective_date=OPENING_DATE)


def test_snapshot_from_result(records: CellarRecords, opening: OpeningBalances) -> None:
    result = reconcile(records, opening, [_legacy(45)], as_of=date(2024, 3, 31))

    snapshot = snapshot_from_result(result, organization_id="org-1", name="Q1", previous_reconciliation_id=None)

    assert snapshot.reconciliation_date == date(2024, 3, 31)
    assert snapshot.opening_balance_date == OPENING_DATE
    assert snapshot.ttb_balance == Decimal(1000)
    assert snapshot.difference == Decimal(5)
    assert not snapshot.is_reconciled
    assert snapshot.on_hand_end[TaxClass.HARD_CIDER.value] == Decimal(795)
    assert snapshot.summary == result
