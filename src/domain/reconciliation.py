"""Reconciliation of TTB-reported balances against system-tracked inventory.

Every row reports ``difference = ttb_total - (current_inventory + removals +
legacy_batches)`` in wine gallons, so the conservation identity holds by
construction. A row is reconciled when the absolute difference is strictly
below half a gallon.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import StrEnum
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from .cellar import CellarRecords
from .errors import InvalidVolumeError
from .inventory import InventoryAggregator, InventorySnapshot, PeriodActivity, RecordIssue, group_by_year
from .period import DateRange
from .production_audit import ProductionAudit, ProductionCrossCheck, cross_check, production_totals, source_liters_between
from .tax_class import SPIRITS_CLASS_LABELS, TAX_CLASS_LABELS, SpiritsClass, TaxClass
from .volume import liters, liters_to_gallons

logger = logging.getLogger(__name__)

RECONCILIATION_TOLERANCE_GALLONS = Decimal("0.5")
_ONE_DAY = timedelta(days=1)
SNAPSHOT_SCHEMA_VERSION = 2


class ReconciliationGuidance(StrEnum):
    RECONCILED = "reconciled"
    TTB_EXCEEDS_SYSTEM = "ttb_exceeds_system"
    SYSTEM_EXCEEDS_TTB = "system_exceeds_ttb"


GUIDANCE_TEXT: dict[ReconciliationGuidance, str] = {
    ReconciliationGuidance.RECONCILED: "Reconciled within tolerance.",
    ReconciliationGuidance.TTB_EXCEEDS_SYSTEM: (
        "TTB shows more than system: create Legacy Batches for inventory that predates tracking."
    ),
    ReconciliationGuidance.SYSTEM_EXCEEDS_TTB: (
        "System shows more than TTB: correct the opening balance or batch initial volumes."
    ),
}


class RowType(StrEnum):
    TAX_CLASS = "tax_class"
    SPIRITS = "spirits"


def is_reconciled(difference: Decimal) -> bool:
    return abs(difference) < RECONCILIATION_TOLERANCE_GALLONS


def guidance_for(difference: Decimal) -> ReconciliationGuidance:
    if is_reconciled(difference):
        return ReconciliationGuidance.RECONCILED
    if difference > 0:
        return ReconciliationGuidance.TTB_EXCEEDS_SYSTEM
    return ReconciliationGuidance.SYSTEM_EXCEEDS_TTB


class ReconciliationFigures(BaseModel):
    """The four reconciled quantities in wine gallons and their residual."""

    ttb_total: Decimal = Decimal(0)
    current_inventory: Decimal = Decimal(0)
    removals: Decimal = Decimal(0)
    legacy_batches: Decimal = Decimal(0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def difference(self) -> Decimal:
        return self.ttb_total - (self.current_inventory + self.removals + self.legacy_batches)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_reconciled(self) -> bool:
        return is_reconciled(self.difference)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def guidance(self) -> ReconciliationGuidance:
        return guidance_for(self.difference)

    @property
    def on_hand_end(self) -> Decimal:
        return self.current_inventory + self.legacy_batches


class ReconciliationRow(ReconciliationFigures):
    key: str
    label: str
    row_type: RowType = RowType.TAX_CLASS


class ReconciliationBreakdown(BaseModel):
    bulk_inventory: Decimal = Decimal(0)
    packaged_inventory: Decimal = Decimal(0)
    sales: Decimal = Decimal(0)
    losses: Decimal = Decimal(0)


class InventoryYear(BaseModel):
    year: int
    bulk: Decimal
    packaged: Decimal
    batch_count: int
    package_count: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> Decimal:
        return self.bulk + self.packaged


class BatchDetail(BaseModel):
    batch_id: str
    batch_number: str
    name: str
    volume_gallons: Decimal


class OpeningBalances(BaseModel):
    """TTB-reported balances (wine gallons) on the opening-balance date."""

    balance_date: date | None = None
    bulk: dict[TaxClass, Decimal] = Field(default_factory=lambda: {c: Decimal(0) for c in TaxClass})
    bottled: dict[TaxClass, Decimal] = Field(default_factory=lambda: {c: Decimal(0) for c in TaxClass})
    spirits: dict[SpiritsClass, Decimal] = Field(default_factory=lambda: {s: Decimal(0) for s in SpiritsClass})
    notes: str | None = None

    @model_validator(mode="after")
    def _validate_balances(self) -> OpeningBalances:
        for tax_class in TaxClass:
            self.bulk.setdefault(tax_class, Decimal(0))
            self.bottled.setdefault(tax_class, Decimal(0))
        for spirits_class in SpiritsClass:
            self.spirits.setdefault(spirits_class, Decimal(0))
        for section, values in (("bulk", self.bulk), ("bottled", self.bottled), ("spirits", self.spirits)):
            for key, value in values.items():
                if value < 0:
                    raise InvalidVolumeError(
                        f"Opening balance {section}.{key} must be >= 0, got {value}",
                        section=section,
                        key=str(key),
                        gallons=str(value),
                    )
        return self

    @property
    def has_balances(self) -> bool:
        return self.balance_date is not None

    def total(self, tax_class: TaxClass) -> Decimal:
        return self.bulk[tax_class] + self.bottled[tax_class]


class LegacyBatch(BaseModel):
    """Manually entered pre-tracking inventory used to close reconciliation gaps."""

    id: int | None = None
    name: str
    class_key: str
    volume_liters: Decimal
    effective_date: date
    notes: str | None = None
    deleted: bool = False

    @model_validator(mode="after")
    def _validate_fields(self) -> LegacyBatch:
        if self.class_key not in _ALL_KEYS:
            raise ValueError(f"LegacyBatch.class_key must be a tax or spirits class, got {self.class_key!r}")
        liters(self.volume_liters)
        return self

    def counts_on(self, day: date) -> bool:
        return not self.deleted and self.effective_date <= day


_ALL_KEYS = {c.value for c in TaxClass} | {s.value for s in SpiritsClass}


class ReconciliationResult(BaseModel):
    as_of: date
    period_start: date | None = None
    has_opening_balances: bool = False
    opening_balance_date: date | None = None
    is_initial_reconciliation: bool = False
    rows: list[ReconciliationRow] = Field(default_factory=list)
    totals: ReconciliationFigures = Field(default_factory=ReconciliationFigures)
    breakdown: ReconciliationBreakdown = Field(default_factory=ReconciliationBreakdown)
    inventory_by_year: list[InventoryYear] = Field(default_factory=list)
    production_audit: ProductionAudit = Field(default_factory=ProductionAudit)
    production_check: ProductionCrossCheck | None = None
    tax_classes: list[TaxClass] = Field(default_factory=list)
    batch_details_by_tax_class: dict[TaxClass, list[BatchDetail]] = Field(default_factory=dict)
    unclassified: list[RecordIssue] = Field(default_factory=list)

    def row(self, key: str) -> ReconciliationRow:
        for row in self.rows:
            if row.key == key:
                return row
        raise KeyError(key)

    def on_hand_end(self) -> dict[str, Decimal]:
        """Per-row closing reference (gallons) carried into the next period."""
        return {row.key: row.on_hand_end for row in self.rows}


class ReconciliationSnapshot(BaseModel):
    """An immutable saved reconciliation; later corrections supersede, never rewrite."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    organization_id: str
    reconciliation_date: date
    opening_balance_date: date | None = None
    name: str | None = None
    notes: str | None = None
    period_start_date: date | None = None
    period_end_date: date | None = None
    previous_reconciliation_id: int | None = None
    ttb_balance: Decimal
    current_inventory: Decimal
    removals: Decimal
    legacy_batches: Decimal
    difference: Decimal
    is_reconciled: bool
    on_hand_end: dict[str, Decimal] = Field(default_factory=dict)
    summary: ReconciliationResult | None = None
    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    created_at: datetime | None = None


def _gallons(value: Decimal) -> Decimal:
    return liters_to_gallons(value)


def legacy_liters_by_key(legacy_batches: list[LegacyBatch], as_of: date) -> dict[str, Decimal]:
    totals = {key: Decimal(0) for key in _ALL_KEYS}
    for legacy in legacy_batches:
        if legacy.counts_on(as_of):
            totals[legacy.class_key] += legacy.volume_liters
    return totals


def _class_moves(activity: PeriodActivity, tax_class: TaxClass) -> Decimal:
    """Net volume that changed tax class into ``tax_class`` without leaving inventory."""
    return (
        activity.transferred_in[tax_class]
        - activity.transferred_out[tax_class]
        + activity.bottled_into_packages[tax_class]
        - activity.bottled_from_bulk[tax_class]
    )


def reconcile(
    records: CellarRecords,
    opening: OpeningBalances,
    legacy_batches: list[LegacyBatch],
    *,
    as_of: date,
    period_start: date | None = None,
    previous_on_hand: Mapping[str, Decimal] | None = None,
) -> ReconciliationResult:
    """Reconcile TTB balances against the system as of the end of ``as_of``.

    Without ``previous_on_hand`` the reference is the opening balances plus
    everything produced after the opening-balance date, and ``period_start`` is
    only recorded on the result. With it (a chained period) the reference is
    the previous period's on-hand end plus what was produced from
    ``period_start`` onwards.
    """
    if previous_on_hand is not None:
        if period_start is None:
            raise ValueError("period_start is required when chaining from a previous reconciliation")
        window_start = period_start
    elif opening.balance_date is not None:
        window_start = opening.balance_date + _ONE_DAY
    else:
        window_start = date.min
    if window_start > as_of:
        window = DateRange(start=as_of, end=as_of)
        empty_window = True
    else:
        window = DateRange(start=window_start, end=as_of)
        empty_window = False

    aggregator = InventoryAggregator(records)
    snapshot = aggregator.snapshot(as_of)
    activity = PeriodActivity(window=window) if empty_window else aggregator.activity(window)
    legacy = legacy_liters_by_key(legacy_batches, as_of)

    rows: list[ReconciliationRow] = []
    for tax_class in TaxClass:
        if previous_on_hand is not None:
            reference = Decimal(previous_on_hand.get(tax_class.value, Decimal(0)))
        else:
            reference = opening.total(tax_class)
        additions_liters = activity.additions(tax_class) + _class_moves(activity, tax_class)
        totals = snapshot.totals(tax_class)
        rows.append(
            ReconciliationRow(
                key=tax_class.value,
                label=TAX_CLASS_LABELS[tax_class],
                ttb_total=reference + _gallons(additions_liters),
                current_inventory=_gallons(totals.total),
                removals=_gallons(activity.removals(tax_class)),
                legacy_batches=_gallons(legacy[tax_class.value]),
            )
        )
    for spirits_class in SpiritsClass:
        if previous_on_hand is not None:
            reference = Decimal(previous_on_hand.get(spirits_class.value, Decimal(0)))
        else:
            reference = opening.spirits[spirits_class]
        rows.append(
            ReconciliationRow(
                key=spirits_class.value,
                label=SPIRITS_CLASS_LABELS[spirits_class],
                row_type=RowType.SPIRITS,
                ttb_total=reference,
                legacy_batches=_gallons(legacy[spirits_class.value]),
            )
        )

    totals_row = ReconciliationFigures(
        ttb_total=sum((r.ttb_total for r in rows), start=Decimal(0)),
        current_inventory=sum((r.current_inventory for r in rows), start=Decimal(0)),
        removals=sum((r.removals for r in rows), start=Decimal(0)),
        legacy_batches=sum((r.legacy_batches for r in rows), start=Decimal(0)),
    )

    first_year = _first_production_year(records, opening, as_of)
    audit = production_totals(records, first_year, as_of.year, as_of=as_of)
    check = None
    if not empty_window:
        check = cross_check(
            source_liters_between(records, window.start, window.end),
            activity.batched_from_sources,
        )

    result = ReconciliationResult(
        as_of=as_of,
        period_start=period_start,
        has_opening_balances=opening.has_balances,
        opening_balance_date=opening.balance_date,
        is_initial_reconciliation=(
            opening.balance_date is not None and abs((as_of - opening.balance_date).days) <= 1
        ),
        rows=rows,
        totals=totals_row,
        breakdown=_breakdown(snapshot, activity),
        inventory_by_year=_inventory_by_year(snapshot),
        production_audit=audit,
        production_check=check,
        tax_classes=[
            TaxClass(r.key)
            for r in rows
            if r.row_type == RowType.TAX_CLASS
            and any(v != 0 for v in (r.ttb_total, r.current_inventory, r.removals, r.legacy_batches))
        ],
        batch_details_by_tax_class=_batch_details(snapshot),
        unclassified=[*snapshot.unclassified, *activity.issues],
    )
    logger.info(
        "Reconciliation as of %s: ttb=%s system=%s difference=%s reconciled=%s",
        as_of,
        totals_row.ttb_total,
        totals_row.current_inventory + totals_row.removals + totals_row.legacy_batches,
        totals_row.difference,
        totals_row.is_reconciled,
    )
    return result


def _first_production_year(records: CellarRecords, opening: OpeningBalances, as_of: date) -> int:
    years = [as_of.year]
    if opening.balance_date is not None:
        years.append(opening.balance_date.year)
    years.extend(p.completed_on.year for p in records.press_runs if p.counts and p.completed_on is not None)
    years.extend(p.purchased_on.year for p in records.juice_purchases if not p.deleted)
    return min(y for y in years if y <= as_of.year)


def _breakdown(snapshot: InventorySnapshot, activity: PeriodActivity) -> ReconciliationBreakdown:
    totals = snapshot.totals()
    return ReconciliationBreakdown(
        bulk_inventory=_gallons(totals.bulk),
        packaged_inventory=_gallons(totals.packaged),
        sales=_gallons(sum((activity.taxpaid(c) for c in TaxClass), start=Decimal(0))),
        losses=_gallons(sum((activity.losses(c) for c in TaxClass), start=Decimal(0))),
    )


def _inventory_by_year(snapshot: InventorySnapshot) -> list[InventoryYear]:
    return [
        InventoryYear(
            year=year,
            bulk=_gallons(bulk),
            packaged=_gallons(packaged),
            batch_count=batch_count,
            package_count=package_count,
        )
        for year, (bulk, packaged, batch_count, package_count) in group_by_year(snapshot).items()
    ]


def _batch_details(snapshot: InventorySnapshot) -> dict[TaxClass, list[BatchDetail]]:
    details: dict[TaxClass, list[BatchDetail]] = {tax_class: [] for tax_class in TaxClass}
    for batch in sorted(snapshot.batches, key=lambda b: b.batch_number):
        details[batch.tax_class].append(
            BatchDetail(
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                name=batch.name,
                volume_gallons=_gallons(batch.liters),
            )
        )
    return details


def snapshot_from_result(
    result: ReconciliationResult,
    *,
    organization_id: str,
    name: str | None = None,
    notes: str | None = None,
    period_start_date: date | None = None,
    period_end_date: date | None = None,
    previous_reconciliation_id: int | None = None,
) -> ReconciliationSnapshot:
    return ReconciliationSnapshot(
        organization_id=organization_id,
        reconciliation_date=result.as_of,
        opening_balance_date=result.opening_balance_date,
        name=name,
        notes=notes,
        period_start_date=period_start_date,
        period_end_date=period_end_date,
        previous_reconciliation_id=previous_reconciliation_id,
        ttb_balance=result.totals.ttb_total,
        current_inventory=result.totals.current_inventory,
        removals=result.totals.removals,
        legacy_batches=result.totals.legacy_batches,
        difference=result.totals.difference,
        is_reconciled=result.totals.is_reconciled,
        on_hand_end=result.on_hand_end(),
        summary=result,
    )


__all__ = [
    "BatchDetail",
    "GUIDANCE_TEXT",
    "InventoryYear",
    "LegacyBatch",
    "OpeningBalances",
    "RECONCILIATION_TOLERANCE_GALLONS",
    "ReconciliationBreakdown",
    "ReconciliationFigures",
    "ReconciliationGuidance",
    "ReconciliationResult",
    "ReconciliationRow",
    "ReconciliationSnapshot",
    "RowType",
    "guidance_for",
    "is_reconciled",
    "legacy_liters_by_key",
    "reconcile",
    "snapshot_from_result",
]
