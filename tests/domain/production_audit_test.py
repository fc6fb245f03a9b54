from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from domain.cellar import CellarRecords, JuicePurchase, PressRun
from domain.production_audit import cross_check, production_totals, source_liters_between
from domain.tax_class import TaxClass
from domain.volume import VolumeUnit
from tests.helpers.cellar import gal


@pytest.fixture(scope="function")
def records() -> CellarRecords:
    return CellarRecords(
        press_runs=[
            PressRun(id="p1", completed_on=date(2023, 10, 1), juice_volume_liters=Decimal(1000)),
            PressRun(id="p2", completed_on=date(2024, 10, 1), juice_volume_liters=Decimal(800)),
            PressRun(id="p3", completed_on=date(2024, 10, 2), juice_volume_liters=Decimal(500), completed=False),
            PressRun(id="p4", completed_on=date(2024, 10, 3), juice_volume_liters=Decimal(300), deleted=True),
            PressRun(
                id="p5",
                completed_on=date(2024, 11, 1),
                juice_volume_liters=Decimal(200),
                tax_class=TaxClass.WINE_UNDER_16,
            ),
        ],
        juice_purchases=[
            JuicePurchase(id="j1", purchased_on=date(2024, 3, 1), volume=Decimal(100), unit=VolumeUnit.WINE_GALLONS),
            JuicePurchase(id="j2", purchased_on=date(2024, 4, 1), volume=Decimal(50), deleted=True),
        ],
    )


def test_production_totals_per_year(records: CellarRecords) -> None:
    audit = production_totals(records, 2023, 2024)

    assert [year.year for year in audit.years] == [2023, 2024]
    first, second = audit.years
    assert first.press_runs_liters == Decimal(1000)
    assert first.press_run_count == 1
    assert second.press_runs[TaxClass.HARD_CIDER] == Decimal(800)
    assert second.press_runs[TaxClass.WINE_UNDER_16] == Decimal(200)
    assert second.press_run_count == 2
    assert second.juice_purchases_liters == gal(100)
    assert second.juice_purchase_count == 1
    assert audit.total_liters == Decimal(2000) + gal(100)
    assert audit.by_class()[TaxClass.WINE_UNDER_16] == Decimal(200)


def test_production_totals_respects_as_of(records: CellarRecords) -> None:
    audit = production_totals(records, 2024, 2024, as_of=date(2024, 10, 15))

    assert audit.years[0].press_runs_liters == Decimal(800)
    assert audit.juice_purchases_liters == gal(100)


def test_production_totals_rejects_reversed_years(records: CellarRecords) -> None:
    with pytest.raises(ValueError):
        production_totals(records, 2025, 2024)


def test_source_liters_between(records: CellarRecords) -> None:
    assert source_liters_between(records, date(2024, 1, 1), date(2024, 10, 31)) == Decimal(800) + gal(100)


def test_cross_check_flags_over_batching() -> None:
    ok = cross_check(Decimal(1000), Decimal(900))
    assert ok.unbatched_liters == Decimal(100)
    assert not ok.flagged

    flagged = cross_check(Decimal(1000), Decimal(1200))
    assert flagged.unbatched_liters == Decimal(-200)
    assert flagged.flagged
