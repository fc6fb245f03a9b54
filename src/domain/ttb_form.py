"""TTB F 5120.17 (Report of Wine Premises Operations) builder.

Ledger lines are wine gallons. Each total line must equal the sum of its
constituent lines; a ledger that violates this cannot be constructed, so an
inconsistent form is never emitted.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import ClassVar, Iterable, Mapping

from pydantic import BaseModel, Field, computed_field, model_validator

from .cellar import CellarRecords, RemovalKind, SalesChannel
from .errors import LedgerImbalanceError
from .inventory import InventoryAggregator, InventorySnapshot, PeriodActivity, RecordIssue
from .period import DateRange
from .period_snapshot import BeginningInventory, BeginningSource, TTBPeriodSnapshot
from .reconciliation import OpeningBalances
from .tax import RateTable, TaxComputation, compute_tax
from .tax_class import EFFERVESCENT_CLASSES, TaxClass, zero_by_class
from .volume import kilograms_to_pounds, liters_to_gallons

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE_GALLONS = Decimal("0.1")
TOTAL_COLUMN = "total"
EFFERVESCENT_COLUMN = "effervescent"
BULK_RECEIPT_LINES = (
    "line4_received_bonded",
    "line5_received_customs",
    "line6_received_returned",
    "line7_received_transfer",
)
BOTTLED_RECEIPT_LINES = (
    "line3_received_bonded",
    "line4_received_customs",
    "line5_received_returned",
    "line6_received_transfer",
)


def _line_sum(ledger: BaseModel, names: Iterable[str]) -> Decimal:
    return sum((getattr(ledger, name) for name in names), start=Decimal(0))


class _Ledger(BaseModel):
    ledger_name: ClassVar[str]
    # total line -> constituent lines
    totals: ClassVar[dict[str, tuple[str, ...]]]

    column: str

    @model_validator(mode="after")
    def _validate_totals(self) -> _Ledger:
        for total_line, lines in self.totals.items():
            declared = getattr(self, total_line)
            computed = _line_sum(self, lines)
            if declared != computed:
                raise LedgerImbalanceError(
                    f"{self.ledger_name} {total_line} for {self.column} is {declared}, lines sum to {computed}",
                    ledger=self.ledger_name,
                    line=total_line,
                    tax_class=self.column,
                    expected=declared,
                    computed=computed,
                    constituents=f"{lines[0]}..{lines[-1]}",
                )
        return self

    @classmethod
    def line_names(cls) -> list[str]:
        return [name for name in cls.model_fields if name.startswith("line")]

    @classmethod
    def from_lines(cls, column: str, **lines: Decimal):
        """Build a ledger whose total lines are the sums of the given lines."""
        values = {name: lines.get(name, Decimal(0)) for name in cls.line_names() if name not in cls.totals}
        for total_line, constituents in cls.totals.items():
            values[total_line] = sum((values[name] for name in constituents), start=Decimal(0))
        return cls(column=column, **values)

    @classmethod
    def combine(cls, column: str, ledgers: Iterable[_Ledger]):
        ledgers = list(ledgers)
        lines = {
            name: sum((getattr(ledger, name) for ledger in ledgers), start=Decimal(0))
            for name in cls.line_names()
            if name not in cls.totals
        }
        return cls.from_lines(column, **lines)


class BulkWinesLedger(_Ledger):
    ledger_name: ClassVar[str] = "bulk_wines"
    totals: ClassVar[dict[str, tuple[str, ...]]] = {
        "line11_total": (
            "line1_on_hand_first",
            "line2_produced",
            "line3_other_production",
            "line4_received_bonded",
            "line5_received_customs",
            "line6_received_returned",
            "line7_received_transfer",
            "line8_dumped_to_bulk",
            "line9_transferred_in",
            "line10_withdrawn_fermenters",
        ),
        "line27_total": (
            "line12_bottled",
            "line13_export_transfer",
            "line14_bonded_transfer",
            "line15_customs_transfer",
            "line16_ftz_transfer",
            "line17_taxpaid",
            "line18_tax_free_us",
            "line19_tax_free_export",
            "line20_transferred_out",
            "line21_distilling_material",
            "line22_spirits_added",
            "line23_inventory_losses",
            "line24_destroyed",
            "line25_returned_to_bond",
            "line26_other",
        ),
        "line32_total_on_hand": (
            "line28_on_hand_fermenters",
            "line29_on_hand_finished",
            "line30_on_hand_unfinished",
            "line31_in_transit",
        ),
    }

    line1_on_hand_first: Decimal = Decimal(0)
    line2_produced: Decimal = Decimal(0)
    line3_other_production: Decimal = Decimal(0)
    line4_received_bonded: Decimal = Decimal(0)
    line5_received_customs: Decimal = Decimal(0)
    line6_received_returned: Decimal = Decimal(0)
    line7_received_transfer: Decimal = Decimal(0)
    line8_dumped_to_bulk: Decimal = Decimal(0)
    line9_transferred_in: Decimal = Decimal(0)
    line10_withdrawn_fermenters: Decimal = Decimal(0)
    line11_total: Decimal = Decimal(0)
    line12_bottled: Decimal = Decimal(0)
    line13_export_transfer: Decimal = Decimal(0)
    line14_bonded_transfer: Decimal = Decimal(0)
    line15_customs_transfer: Decimal = Decimal(0)
    line16_ftz_transfer: Decimal = Decimal(0)
    line17_taxpaid: Decimal = Decimal(0)
    line18_tax_free_us: Decimal = Decimal(0)
    line19_tax_free_export: Decimal = Decimal(0)
    line20_transferred_out: Decimal = Decimal(0)
    line21_distilling_material: Decimal = Decimal(0)
    line22_spirits_added: Decimal = Decimal(0)
    line23_inventory_losses: Decimal = Decimal(0)
    line24_destroyed: Decimal = Decimal(0)
    line25_returned_to_bond: Decimal = Decimal(0)
    line26_other: Decimal = Decimal(0)
    line27_total: Decimal = Decimal(0)
    line28_on_hand_fermenters: Decimal = Decimal(0)
    line29_on_hand_finished: Decimal = Decimal(0)
    line30_on_hand_unfinished: Decimal = Decimal(0)
    line31_in_transit: Decimal = Decimal(0)
    line32_total_on_hand: Decimal = Decimal(0)

    @model_validator(mode="after")
    def _validate_finished(self) -> BulkWinesLedger:
        if self.line29_on_hand_finished < 0:
            raise LedgerImbalanceError(
                f"bulk_wines line29_on_hand_finished for {self.column} is negative",
                ledger=self.ledger_name,
                line="line29_on_hand_finished",
                tax_class=self.column,
                computed=self.line29_on_hand_finished,
            )
        return self


class BottledWinesLedger(_Ledger):
    ledger_name: ClassVar[str] = "bottled_wines"
    totals: ClassVar[dict[str, tuple[str, ...]]] = {
        "line7_total": (
            "line1_on_hand_first",
            "line2_bottled",
            "line3_received_bonded",
            "line4_received_customs",
            "line5_received_returned",
            "line6_received_transfer",
        ),
        "line19_total": (
            "line8_dumped_to_bulk",
            "line9_export_transfer",
            "line10_bonded_transfer",
            "line11_customs_transfer",
            "line12_ftz_transfer",
            "line13_taxpaid",
            "line14_tax_free_us",
            "line15_tax_free_export",
            "line16_inventory_losses",
            "line17_destroyed",
            "line18_returned_to_bond",
        ),
    }

    line1_on_hand_first: Decimal = Decimal(0)
    line2_bottled: Decimal = Decimal(0)
    line3_received_bonded: Decimal = Decimal(0)
    line4_received_customs: Decimal = Decimal(0)
    line5_received_returned: Decimal = Decimal(0)
    line6_received_transfer: Decimal = Decimal(0)
    line7_total: Decimal = Decimal(0)
    line8_dumped_to_bulk: Decimal = Decimal(0)
    line9_export_transfer: Decimal = Decimal(0)
    line10_bonded_transfer: Decimal = Decimal(0)
    line11_customs_transfer: Decimal = Decimal(0)
    line12_ftz_transfer: Decimal = Decimal(0)
    line13_taxpaid: Decimal = Decimal(0)
    line14_tax_free_us: Decimal = Decimal(0)
    line15_tax_free_export: Decimal = Decimal(0)
    line16_inventory_losses: Decimal = Decimal(0)
    line17_destroyed: Decimal = Decimal(0)
    line18_returned_to_bond: Decimal = Decimal(0)
    line19_total: Decimal = Decimal(0)
    line20_on_hand_end: Decimal = Decimal(0)
    line21_in_transit: Decimal = Decimal(0)


class BrandyTransferLine(BaseModel):
    transferred_on: date
    source_batch: str
    destination_batch: str
    gallons: Decimal


class DistilleryOperations(BaseModel):
    cider_sent_to_dsp: Decimal = Decimal(0)
    cider_shipment_count: int = 0
    brandy_received: Decimal = Decimal(0)
    brandy_receipt_count: int = 0
    brandy_used_in_fortification: Decimal = Decimal(0)
    brandy_transfers: list[BrandyTransferLine] = Field(default_factory=list)


class CiderBrandyRow(BaseModel):
    product: str
    opening: Decimal
    received: Decimal
    used: Decimal
    actual_ending: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def expected_ending(self) -> Decimal:
        return self.opening + self.received - self.used

    @computed_field  # type: ignore[prop-decorator]
    @property
    def discrepancy(self) -> Decimal:
        return self.actual_ending - self.expected_ending

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_discrepancy(self) -> bool:
        return abs(self.discrepancy) >= BALANCE_TOLERANCE_GALLONS


class CiderBrandyReconciliation(BaseModel):
    cider: CiderBrandyRow
    brandy: CiderBrandyRow

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> CiderBrandyRow:
        return CiderBrandyRow(
            product="total",
            opening=self.cider.opening + self.brandy.opening,
            received=self.cider.received + self.brandy.received,
            used=self.cider.used + self.brandy.used,
            actual_ending=self.cider.actual_ending + self.brandy.actual_ending,
        )


class CiderBrandyInventory(BaseModel):
    cider_bulk: Decimal = Decimal(0)
    cider_bottled: Decimal = Decimal(0)
    brandy_bulk: Decimal = Decimal(0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cider_total(self) -> Decimal:
        return self.cider_bulk + self.cider_bottled


class MaterialsUsage(BaseModel):
    apples_lbs: Decimal = Decimal(0)
    other_fruit_lbs: Decimal = Decimal(0)
    honey_lbs: Decimal = Decimal(0)
    sugar_lbs: Decimal = Decimal(0)
    juice_purchased_gallons: Decimal = Decimal(0)
    juice_pressed_gallons: Decimal = Decimal(0)


class InFermenters(BaseModel):
    by_class: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> Decimal:
        return sum(self.by_class.values(), start=Decimal(0))


class BalanceCheck(BaseModel):
    beginning: Decimal
    produced: Decimal
    receipts: Decimal
    removals: Decimal
    ending: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_available(self) -> Decimal:
        return self.beginning + self.produced + self.receipts

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_accounted_for(self) -> Decimal:
        return self.removals + self.ending

    @computed_field  # type: ignore[prop-decorator]
    @property
    def variance(self) -> Decimal:
        return self.total_available - self.total_accounted_for

    @computed_field  # type: ignore[prop-decorator]
    @property
    def balanced(self) -> bool:
        return abs(self.variance) < BALANCE_TOLERANCE_GALLONS


class TTBForm512017Data(BaseModel):
    period: DateRange
    beginning_source: BeginningSource
    bulk_wines: dict[TaxClass, BulkWinesLedger]
    bottled_wines: dict[TaxClass, BottledWinesLedger]
    bulk_totals: BulkWinesLedger
    bottled_totals: BottledWinesLedger
    removals_by_kind: dict[RemovalKind, Decimal] = Field(default_factory=dict)
    taxpaid_by_channel: dict[SalesChannel, Decimal] = Field(default_factory=dict)
    distillery_operations: DistilleryOperations = Field(default_factory=DistilleryOperations)
    cider_brandy_reconciliation: CiderBrandyReconciliation
    cider_brandy_inventory: CiderBrandyInventory = Field(default_factory=CiderBrandyInventory)
    materials: MaterialsUsage = Field(default_factory=MaterialsUsage)
    fermenters: InFermenters = Field(default_factory=InFermenters)
    balance_check: BalanceCheck
    tax: TaxComputation
    unclassified: list[RecordIssue] = Field(default_factory=list)

    def effervescent_bulk(self) -> BulkWinesLedger:
        """Presentation column: carbonated plus sparkling."""
        return BulkWinesLedger.combine(EFFERVESCENT_COLUMN, (self.bulk_wines[c] for c in EFFERVESCENT_CLASSES))

    def effervescent_bottled(self) -> BottledWinesLedger:
        return BottledWinesLedger.combine(EFFERVESCENT_COLUMN, (self.bottled_wines[c] for c in EFFERVESCENT_CLASSES))

    def ending_bulk(self) -> dict[TaxClass, Decimal]:
        return {c: ledger.line32_total_on_hand for c, ledger in self.bulk_wines.items()}

    def ending_bottled(self) -> dict[TaxClass, Decimal]:
        return {c: ledger.line20_on_hand_end for c, ledger in self.bottled_wines.items()}


def _gal(value: Decimal) -> Decimal:
    return liters_to_gallons(value)


def calculated_beginning(aggregator: InventoryAggregator, period_start: date) -> BeginningInventory:
    snapshot = aggregator.snapshot(period_start - timedelta(days=1))
    by_class = snapshot.by_class()
    return BeginningInventory(
        source=BeginningSource.CALCULATED,
        bulk={c: _gal(by_class[c].bulk) for c in TaxClass},
        bottled={c: _gal(by_class[c].packaged) for c in TaxClass},
    )


def resolve_beginning_inventory(
    period_start: date,
    aggregator: InventoryAggregator,
    *,
    latest_finalized: TTBPeriodSnapshot | None = None,
    opening: OpeningBalances | None = None,
) -> BeginningInventory:
    """Beginning inventory for a period, by priority.

    1. the ending on-hand of the latest finalized period snapshot ending before
       ``period_start``;
    2. the TTB opening balances when ``period_start`` is the day after their date;
    3. point-in-time inventory at the end of the day before ``period_start``.

    Later periods use the calculated inventory so that line 1 always equals the
    previous period's ending on-hand.
    """
    if latest_finalized is not None and latest_finalized.period_end < period_start:
        return BeginningInventory(
            source=BeginningSource.FINALIZED_SNAPSHOT,
            bulk=dict(latest_finalized.ending_bulk),
            bottled=dict(latest_finalized.ending_bottled),
            snapshot_id=latest_finalized.id,
        )
    if (
        opening is not None
        and opening.balance_date is not None
        and period_start == opening.balance_date + timedelta(days=1)
    ):
        return BeginningInventory(
            source=BeginningSource.OPENING_BALANCES,
            bulk=dict(opening.bulk),
            bottled=dict(opening.bottled),
        )
    return calculated_beginning(aggregator, period_start)


def _bulk_ledger(
    tax_class: TaxClass,
    beginning: BeginningInventory,
    activity: PeriodActivity,
    ending: InventorySnapshot,
    fermenters: Mapping[TaxClass, Decimal],
) -> BulkWinesLedger:
    removals = activity.bulk_removals
    bulk_end = ending.by_class()[tax_class].bulk
    in_fermenters = fermenters[tax_class]
    return BulkWinesLedger.from_lines(
        tax_class.value,
        line1_on_hand_first=beginning.bulk[tax_class],
        line2_produced=_gal(activity.produced[tax_class]),
        line3_other_production=_gal(activity.spirits_added[tax_class]),
        line9_transferred_in=_gal(activity.transferred_in[tax_class]),
        line12_bottled=_gal(activity.bottled_from_bulk[tax_class]),
        line17_taxpaid=_gal(removals[RemovalKind.TAXPAID][tax_class]),
        line18_tax_free_us=_gal(removals[RemovalKind.TAX_FREE][tax_class] + removals[RemovalKind.SAMPLE][tax_class]),
        line19_tax_free_export=_gal(removals[RemovalKind.EXPORT][tax_class]),
        line20_transferred_out=_gal(activity.transferred_out[tax_class]),
        line21_distilling_material=_gal(activity.sent_to_dsp[tax_class]),
        line23_inventory_losses=_gal(activity.bulk_losses[tax_class] + removals[RemovalKind.BREAKAGE][tax_class]),
        line24_destroyed=_gal(removals[RemovalKind.SPOILAGE][tax_class] + removals[RemovalKind.DESTROYED][tax_class]),
        line28_on_hand_fermenters=_gal(in_fermenters),
        line29_on_hand_finished=_gal(bulk_end - in_fermenters),
    )


def _bottled_ledger(
    tax_class: TaxClass, beginning: BeginningInventory, activity: PeriodActivity, ending: InventorySnapshot
) -> BottledWinesLedger:
    removals = activity.packaged_removals
    return BottledWinesLedger.from_lines(
        tax_class.value,
        line1_on_hand_first=beginning.bottled[tax_class],
        line2_bottled=_gal(activity.bottled_into_packages[tax_class]),
        line13_taxpaid=_gal(removals[RemovalKind.TAXPAID][tax_class]),
        line14_tax_free_us=_gal(removals[RemovalKind.TAX_FREE][tax_class] + removals[RemovalKind.SAMPLE][tax_class]),
        line15_tax_free_export=_gal(removals[RemovalKind.EXPORT][tax_class]),
        line16_inventory_losses=_gal(removals[RemovalKind.BREAKAGE][tax_class]),
        line17_destroyed=_gal(removals[RemovalKind.SPOILAGE][tax_class] + removals[RemovalKind.DESTROYED][tax_class]),
        line20_on_hand_end=_gal(ending.by_class()[tax_class].packaged),
    )


def _materials(records: CellarRecords, period: DateRange) -> MaterialsUsage:
    materials = MaterialsUsage()
    for fruit in records.fruit_purchases:
        if not period.contains(fruit.purchased_on):
            continue
        pounds = kilograms_to_pounds(fruit.quantity_kg)
        if fruit.is_apple:
            materials.apples_lbs += pounds
        else:
            materials.other_fruit_lbs += pounds
    for additive in records.additive_purchases:
        if not period.contains(additive.purchased_on):
            continue
        unit = additive.unit.strip().lower()
        pounds = additive.quantity if unit in ("lb", "lbs") else kilograms_to_pounds(additive.quantity)
        name = additive.name.lower()
        if "honey" in name:
            materials.honey_lbs += pounds
        elif "sugar" in name:
            materials.sugar_lbs += pounds
    for purchase in records.juice_purchases:
        if not purchase.deleted and period.contains(purchase.purchased_on):
            materials.juice_purchased_gallons += _gal(purchase.volume_liters)
    for press_run in records.press_runs:
        if press_run.counts and press_run.completed_on is not None and period.contains(press_run.completed_on):
            materials.juice_pressed_gallons += _gal(press_run.juice_volume_liters)
    return materials


def build_form(
    records: CellarRecords,
    period: DateRange,
    *,
    beginning: BeginningInventory,
    rates: RateTable,
    prior_credit_gallons_by_class: Mapping[TaxClass, Decimal] | None = None,
) -> TTBForm512017Data:
    """Assemble the full form for ``period`` starting from ``beginning``.

    Raises ``LedgerImbalanceError`` when a ledger cannot satisfy its total
    identities and ``RateNotFoundError`` when a taxable class has no rate on
    the period end date.
    """
    aggregator = InventoryAggregator(records)
    activity = aggregator.activity(period)
    opening_snapshot = aggregator.snapshot(period.day_before_start)
    ending = aggregator.snapshot(period.end)
    fermenters = ending.in_fermenters()

    bulk = {c: _bulk_ledger(c, beginning, activity, ending, fermenters) for c in TaxClass}
    bottled = {c: _bottled_ledger(c, beginning, activity, ending) for c in TaxClass}
    bulk_totals = BulkWinesLedger.combine(TOTAL_COLUMN, bulk.values())
    bottled_totals = BottledWinesLedger.combine(TOTAL_COLUMN, bottled.values())

    removals_by_kind = {
        kind: _gal(
            sum(activity.bulk_removals[kind].values(), start=Decimal(0))
            + sum(activity.packaged_removals[kind].values(), start=Decimal(0))
        )
        for kind in RemovalKind
    }
    taxpaid_by_channel = {channel: _gal(liters) for channel, liters in activity.taxpaid_by_channel.items()}

    brandy_used = sum((t.liters for t in activity.brandy_transfers), start=Decimal(0))
    distillery = DistilleryOperations(
        cider_sent_to_dsp=_gal(sum(activity.sent_to_dsp.values(), start=Decimal(0))),
        cider_shipment_count=activity.dsp_shipment_count,
        brandy_received=_gal(activity.brandy_received_liters),
        brandy_receipt_count=activity.brandy_receipt_count,
        brandy_used_in_fortification=_gal(brandy_used),
        brandy_transfers=[
            BrandyTransferLine(
                transferred_on=t.transferred_on,
                source_batch=t.source_batch,
                destination_batch=t.destination_batch,
                gallons=_gal(t.liters),
            )
            for t in activity.brandy_transfers
        ],
    )

    cider = TaxClass.HARD_CIDER
    cider_bulk = bulk[cider]
    cider_bottled = bottled[cider]
    cider_brandy = CiderBrandyReconciliation(
        cider=CiderBrandyRow(
            product="cider",
            opening=cider_bulk.line1_on_hand_first + cider_bottled.line1_on_hand_first,
            received=(
                _line_sum(cider_bulk, BulkWinesLedger.totals["line11_total"][1:])
                + cider_bottled.line2_bottled
                - cider_bulk.line12_bottled
            ),
            used=(
                cider_bulk.line27_total
                - cider_bulk.line12_bottled
                + cider_bottled.line19_total
            ),
            actual_ending=cider_bulk.line32_total_on_hand + cider_bottled.line20_on_hand_end,
        ),
        brandy=CiderBrandyRow(
            product="brandy",
            opening=_gal(opening_snapshot.brandy_liters),
            received=_gal(activity.brandy_received_liters),
            used=_gal(brandy_used),
            actual_ending=_gal(ending.brandy_liters),
        ),
    )
    cider_brandy_inventory = CiderBrandyInventory(
        cider_bulk=cider_bulk.line32_total_on_hand,
        cider_bottled=cider_bottled.line20_on_hand_end,
        brandy_bulk=_gal(ending.brandy_liters),
    )

    balance = BalanceCheck(
        beginning=bulk_totals.line1_on_hand_first + bottled_totals.line1_on_hand_first,
        produced=bulk_totals.line2_produced + bulk_totals.line3_other_production,
        receipts=(
            _line_sum(bulk_totals, BULK_RECEIPT_LINES)
            + _line_sum(bottled_totals, BOTTLED_RECEIPT_LINES)
        ),
        removals=(
            bulk_totals.line27_total
            - bulk_totals.line12_bottled
            - bulk_totals.line20_transferred_out
            + bottled_totals.line19_total
            - bottled_totals.line8_dumped_to_bulk
        ),
        ending=bulk_totals.line32_total_on_hand + bottled_totals.line20_on_hand_end,
    )
    if not balance.balanced:
        logger.warning("Form for %s..%s does not balance: variance %s gal", period.start, period.end, balance.variance)

    taxable = {c: bulk[c].line17_taxpaid + bottled[c].line13_taxpaid for c in TaxClass}
    tax = compute_tax(taxable, rates, on=period.end, prior_credit_gallons_by_class=prior_credit_gallons_by_class)

    form = TTBForm512017Data(
        period=period,
        beginning_source=beginning.source,
        bulk_wines=bulk,
        bottled_wines=bottled,
        bulk_totals=bulk_totals,
        bottled_totals=bottled_totals,
        removals_by_kind=removals_by_kind,
        taxpaid_by_channel=taxpaid_by_channel,
        distillery_operations=distillery,
        cider_brandy_reconciliation=cider_brandy,
        cider_brandy_inventory=cider_brandy_inventory,
        materials=_materials(records, period),
        fermenters=InFermenters(by_class={c: _gal(v) for c, v in fermenters.items()}),
        balance_check=balance,
        tax=tax,
        unclassified=[*ending.unclassified, *activity.issues],
    )
    logger.info(
        "Built TTB 5120.17 for %s..%s: beginning=%s ending=%s net tax=%s",
        period.start,
        period.end,
        balance.beginning,
        balance.ending,
        tax.total.net_tax,
    )
    return form


__all__ = [
    "BALANCE_TOLERANCE_GALLONS",
    "BalanceCheck",
    "BottledWinesLedger",
    "BrandyTransferLine",
    "BulkWinesLedger",
    "CiderBrandyInventory",
    "CiderBrandyReconciliation",
    "CiderBrandyRow",
    "DistilleryOperations",
    "InFermenters",
    "MaterialsUsage",
    "TTBForm512017Data",
    "build_form",
    "calculated_beginning",
    "resolve_beginning_inventory",
]
