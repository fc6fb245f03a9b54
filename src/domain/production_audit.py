from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field

from .cellar import CellarRecords
from .tax_class import TaxClass, zero_by_class

logger = logging.getLogger(__name__)


class ProductionYear(BaseModel):
    """Source-based production for one calendar year, liters per tax class."""

    year: int
    press_runs: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    juice_purchases: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    press_run_count: int = 0
    juice_purchase_count: int = 0

    def total(self, tax_class: TaxClass) -> Decimal:
        return self.press_runs[tax_class] + self.juice_purchases[tax_class]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def press_runs_liters(self) -> Decimal:
        return sum(self.press_runs.values(), start=Decimal(0))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def juice_purchases_liters(self) -> Decimal:
        return sum(self.juice_purchases.values(), start=Decimal(0))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_liters(self) -> Decimal:
        return self.press_runs_liters + self.juice_purchases_liters


class ProductionAudit(BaseModel):
    years: list[ProductionYear] = Field(default_factory=list)

    @property
    def press_runs_liters(self) -> Decimal:
        return sum((y.press_runs_liters for y in self.years), start=Decimal(0))

    @property
    def juice_purchases_liters(self) -> Decimal:
        return sum((y.juice_purchases_liters for y in self.years), start=Decimal(0))

    @property
    def total_liters(self) -> Decimal:
        return self.press_runs_liters + self.juice_purchases_liters

    def by_class(self) -> dict[TaxClass, Decimal]:
        totals = zero_by_class()
        for year in self.years:
            for tax_class in TaxClass:
                totals[tax_class] += year.total(tax_class)
        return totals


class ProductionCrossCheck(BaseModel):
    """Source volume versus what was actually put into batches."""

    source_liters: Decimal
    batched_liters: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unbatched_liters(self) -> Decimal:
        return self.source_liters - self.batched_liters

    @computed_field  # type: ignore[prop-decorator]
    @property
    def flagged(self) -> bool:
        return self.unbatched_liters < 0


def production_totals(
    records: CellarRecords, first_year: int, last_year: int, *, as_of: date | None = None
) -> ProductionAudit:
    """Sum press runs and juice purchases per year and tax class.

    Computed from production sources only, never from batches or inventory,
    so it can be cross-checked against the inventory path.
    """
    if first_year > last_year:
        raise ValueError(f"first_year {first_year} is after last_year {last_year}")
    years = {year: ProductionYear(year=year) for year in range(first_year, last_year + 1)}

    for press_run in records.press_runs:
        if not press_run.counts:
            continue
        assert press_run.completed_on is not None
        if as_of is not None and press_run.completed_on > as_of:
            continue
        bucket = years.get(press_run.completed_on.year)
        if bucket is None:
            continue
        bucket.press_runs[press_run.tax_class] += press_run.juice_volume_liters
        bucket.press_run_count += 1

    for purchase in records.juice_purchases:
        if purchase.deleted:
            continue
        if as_of is not None and purchase.purchased_on > as_of:
            continue
        bucket = years.get(purchase.purchased_on.year)
        if bucket is None:
            continue
        bucket.juice_purchases[purchase.tax_class] += purchase.volume_liters
        bucket.juice_purchase_count += 1

    return ProductionAudit(years=list(years.values()))


def source_liters_between(records: CellarRecords, start: date, end: date) -> Decimal:
    total = Decimal(0)
    for press_run in records.press_runs:
        if press_run.counts and press_run.completed_on is not None and start <= press_run.completed_on <= end:
            total += press_run.juice_volume_liters
    for purchase in records.juice_purchases:
        if not purchase.deleted and start <= purchase.purchased_on <= end:
            total += purchase.volume_liters
    return total


def cross_check(source_liters: Decimal, batched_liters: Decimal) -> ProductionCrossCheck:
    result = ProductionCrossCheck(source_liters=source_liters, batched_liters=batched_liters)
    if result.flagged:
        logger.warning(
            "More volume batched (%s L) than pressed or purchased (%s L)",
            batched_liters,
            source_liters,
        )
    return result


__all__ = [
    "ProductionAudit",
    "ProductionCrossCheck",
    "ProductionYear",
    "cross_check",
    "production_totals",
    "source_liters_between",
]
