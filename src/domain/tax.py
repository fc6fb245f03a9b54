"""Excise tax and small-producer credit per tax class.

Rates live in a ``RateTable`` keyed by tax class and effective date range so
that a period can be re-filed under the rate that was in force at the time.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Mapping

from pydantic import BaseModel, Field, computed_field, model_validator

from .errors import InvalidVolumeError, RateNotFoundError
from .tax_class import TAX_CLASS_LABELS, TaxClass


class CreditTier(BaseModel):
    """``gallons`` is the size of the tier; ``None`` means unbounded."""

    gallons: Decimal | None = None
    credit_rate: Decimal

    @model_validator(mode="after")
    def _validate_fields(self) -> CreditTier:
        if self.gallons is not None and self.gallons <= 0:
            raise ValueError("CreditTier.gallons must be > 0")
        if self.credit_rate < 0:
            raise ValueError("CreditTier.credit_rate must be >= 0")
        return self


class TaxRate(BaseModel):
    tax_class: TaxClass
    rate: Decimal
    effective_from: date
    effective_to: date | None = None
    credit_tiers: list[CreditTier] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_fields(self) -> TaxRate:
        if self.rate < 0:
            raise ValueError(f"TaxRate.rate must be >= 0 for {self.tax_class}")
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError(f"TaxRate for {self.tax_class} ends before it starts")
        return self

    def in_effect_on(self, day: date) -> bool:
        return self.effective_from <= day and (self.effective_to is None or day <= self.effective_to)


class RateTable(BaseModel):
    rates: list[TaxRate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_overlaps(self) -> RateTable:
        for tax_class in TaxClass:
            entries = sorted((r for r in self.rates if r.tax_class == tax_class), key=lambda r: r.effective_from)
            for earlier, later in zip(entries, entries[1:]):
                if earlier.effective_to is None or earlier.effective_to >= later.effective_from:
                    raise ValueError(f"Overlapping tax rates for {tax_class} starting {later.effective_from}")
        return self

    def rate_for(self, tax_class: TaxClass, on: date) -> TaxRate:
        for rate in self.rates:
            if rate.tax_class == tax_class and rate.in_effect_on(on):
                return rate
        raise RateNotFoundError(
            f"No tax rate configured for {tax_class} on {on}", tax_class=tax_class.value, on=on.isoformat()
        )


class TaxComputationRow(BaseModel):
    tax_class: TaxClass | None = None
    label: str
    taxable_gallons: Decimal
    tax_rate: Decimal | None = None
    gross_tax: Decimal
    small_producer_credit_gallons: Decimal
    small_producer_credit: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def net_tax(self) -> Decimal:
        return self.gross_tax - self.small_producer_credit


class TaxComputation(BaseModel):
    rows: list[TaxComputationRow] = Field(default_factory=list)
    total: TaxComputationRow

    def row(self, tax_class: TaxClass) -> TaxComputationRow:
        for row in self.rows:
            if row.tax_class == tax_class:
                return row
        raise KeyError(tax_class)


def apply_credit_tiers(
    tiers: list[CreditTier], eligible_gallons: Decimal, prior_gallons: Decimal = Decimal(0)
) -> tuple[Decimal, Decimal]:
    """Allocate ``eligible_gallons`` across tiers after ``prior_gallons`` already used.

    Returns ``(credited gallons, credit amount)``.
    """
    credited = Decimal(0)
    credit = Decimal(0)
    remaining = eligible_gallons
    consumed = prior_gallons
    for tier in tiers:
        if remaining <= 0:
            break
        if tier.gallons is None:
            room = remaining
        else:
            skip = min(consumed, tier.gallons)
            consumed -= skip
            room = min(remaining, tier.gallons - skip)
        if room <= 0:
            continue
        credited += room
        credit += room * tier.credit_rate
        remaining -= room
    return credited, credit


def compute_tax(
    taxable_gallons_by_class: Mapping[TaxClass, Decimal],
    rates: RateTable,
    *,
    on: date,
    credit_eligible_gallons_by_class: Mapping[TaxClass, Decimal] | None = None,
    prior_credit_gallons_by_class: Mapping[TaxClass, Decimal] | None = None,
) -> TaxComputation:
    """Gross tax, small-producer credit and net tax per class plus an aggregate row.

    Credit-eligible gallons default to the taxable gallons and are never
    allowed to exceed them; the credit is capped at the gross tax so a class
    never ends up with negative net tax.
    """
    rows: list[TaxComputationRow] = []
    for tax_class in TaxClass:
        taxable = taxable_gallons_by_class.get(tax_class, Decimal(0))
        if taxable < 0:
            raise InvalidVolumeError(
                f"Taxable gallons must be >= 0, got {taxable} for {tax_class}",
                tax_class=tax_class.value,
                gallons=str(taxable),
            )
        if taxable == 0:
            rows.append(
                TaxComputationRow(
                    tax_class=tax_class,
                    label=TAX_CLASS_LABELS[tax_class],
                    taxable_gallons=Decimal(0),
                    gross_tax=Decimal(0),
                    small_producer_credit_gallons=Decimal(0),
                    small_producer_credit=Decimal(0),
                )
            )
            continue

        rate = rates.rate_for(tax_class, on)
        gross = taxable * rate.rate
        eligible = taxable
        if credit_eligible_gallons_by_class is not None:
            eligible = max(Decimal(0), min(taxable, credit_eligible_gallons_by_class.get(tax_class, Decimal(0))))
        prior = Decimal(0)
        if prior_credit_gallons_by_class is not None:
            prior = max(Decimal(0), prior_credit_gallons_by_class.get(tax_class, Decimal(0)))
        credit_gallons, credit = apply_credit_tiers(rate.credit_tiers, eligible, prior)
        credit = min(credit, gross)
        rows.append(
            TaxComputationRow(
                tax_class=tax_class,
                label=TAX_CLASS_LABELS[tax_class],
                taxable_gallons=taxable,
                tax_rate=rate.rate,
                gross_tax=gross,
                small_producer_credit_gallons=credit_gallons,
                small_producer_credit=credit,
            )
        )

    total = TaxComputationRow(
        label="Total",
        taxable_gallons=sum((r.taxable_gallons for r in rows), start=Decimal(0)),
        gross_tax=sum((r.gross_tax for r in rows), start=Decimal(0)),
        small_producer_credit_gallons=sum((r.small_producer_credit_gallons for r in rows), start=Decimal(0)),
        small_producer_credit=sum((r.small_producer_credit for r in rows), start=Decimal(0)),
    )
    return TaxComputation(rows=rows, total=total)


__all__ = [
    "CreditTier",
    "RateTable",
    "TaxComputation",
    "TaxComputationRow",
    "TaxRate",
    "apply_credit_tiers",
    "compute_tax",
]
