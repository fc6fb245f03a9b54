from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field

from .cellar import (
    Batch,
    BatchId,
    BatchOrigin,
    BatchTransfer,
    CellarRecords,
    PackagingRun,
    PackagingRunId,
    Removal,
    RemovalKind,
    SalesChannel,
)
from .errors import ClassificationError, InvalidVolumeError, TTBEngineError
from .period import DateRange
from .tax_class import SPIRITS_PRODUCT_TYPES, BatchSnapshot, TaxClass, classify, zero_by_class

logger = logging.getLogger(__name__)

PRODUCTION_ORIGINS = frozenset({BatchOrigin.PRESS_RUN, BatchOrigin.JUICE_PURCHASE, BatchOrigin.OTHER})
SOURCE_ORIGINS = frozenset({BatchOrigin.PRESS_RUN, BatchOrigin.JUICE_PURCHASE})


class RecordIssue(BaseModel):
    """A record excluded from totals, with the structured error that excluded it."""

    kind: str
    record_id: str
    message: str
    volume_liters: Decimal | None = None
    context: dict[str, object] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: TTBEngineError, *, record_id: str, volume_liters: Decimal | None = None) -> RecordIssue:
        return cls(
            kind=error.kind,
            record_id=record_id,
            message=str(error),
            volume_liters=volume_liters,
            context={key: str(value) for key, value in error.context.items()},
        )


class InventoryTotals(BaseModel):
    bulk: Decimal = Decimal(0)
    packaged: Decimal = Decimal(0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> Decimal:
        return self.bulk + self.packaged


class BatchVolume(BaseModel):
    batch_id: BatchId
    batch_number: str
    name: str
    tax_class: TaxClass
    start_year: int
    liters: Decimal
    in_fermenter: bool


class PackagedVolume(BaseModel):
    packaging_run_id: PackagingRunId
    batch_id: BatchId
    tax_class: TaxClass
    start_year: int
    liters: Decimal


class InventorySnapshot(BaseModel):
    """On-hand volume (liters) as it stood at the end of ``as_of``."""

    as_of: date
    batches: list[BatchVolume] = Field(default_factory=list)
    packages: list[PackagedVolume] = Field(default_factory=list)
    brandy_liters: Decimal = Decimal(0)
    unclassified: list[RecordIssue] = Field(default_factory=list)

    def by_class(self) -> dict[TaxClass, InventoryTotals]:
        bulk = zero_by_class()
        packaged = zero_by_class()
        for batch in self.batches:
            bulk[batch.tax_class] += batch.liters
        for package in self.packages:
            packaged[package.tax_class] += package.liters
        return {tax_class: InventoryTotals(bulk=bulk[tax_class], packaged=packaged[tax_class]) for tax_class in TaxClass}

    def totals(self, tax_class: TaxClass | None = None) -> InventoryTotals:
        batches = [b for b in self.batches if tax_class is None or b.tax_class == tax_class]
        packages = [p for p in self.packages if tax_class is None or p.tax_class == tax_class]
        return InventoryTotals(
            bulk=sum((b.liters for b in batches), start=Decimal(0)),
            packaged=sum((p.liters for p in packages), start=Decimal(0)),
        )

    def in_fermenters(self) -> dict[TaxClass, Decimal]:
        totals = zero_by_class()
        for batch in self.batches:
            if batch.in_fermenter:
                totals[batch.tax_class] += batch.liters
        return totals

    @property
    def unclassified_liters(self) -> Decimal:
        return sum((issue.volume_liters or Decimal(0) for issue in self.unclassified), start=Decimal(0))


class BrandyTransfer(BaseModel):
    transferred_on: date
    source_batch: str
    destination_batch: str
    liters: Decimal


class PeriodActivity(BaseModel):
    """Volume movements (liters) within a window, keyed by tax class."""

    window: DateRange
    produced: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    spirits_added: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    transferred_in: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    transferred_out: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    bottled_from_bulk: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    bottled_into_packages: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    bulk_losses: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    bulk_removals: dict[RemovalKind, dict[TaxClass, Decimal]] = Field(
        default_factory=lambda: {kind: zero_by_class() for kind in RemovalKind}
    )
    packaged_removals: dict[RemovalKind, dict[TaxClass, Decimal]] = Field(
        default_factory=lambda: {kind: zero_by_class() for kind in RemovalKind}
    )
    taxpaid_by_channel: dict[SalesChannel, Decimal] = Field(
        default_factory=lambda: {channel: Decimal(0) for channel in SalesChannel}
    )
    sent_to_dsp: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    dsp_shipment_count: int = 0
    brandy_received_liters: Decimal = Decimal(0)
    brandy_receipt_count: int = 0
    brandy_transfers: list[BrandyTransfer] = Field(default_factory=list)
    batched_from_sources: Decimal = Decimal(0)
    issues: list[RecordIssue] = Field(default_factory=list)

    def removals(self, tax_class: TaxClass) -> Decimal:
        """Everything that left the premises or was lost or destroyed for a class."""
        total = self.bulk_losses[tax_class] + self.sent_to_dsp[tax_class]
        for kind in RemovalKind:
            total += self.bulk_removals[kind][tax_class] + self.packaged_removals[kind][tax_class]
        return total

    def taxpaid(self, tax_class: TaxClass) -> Decimal:
        return self.bulk_removals[RemovalKind.TAXPAID][tax_class] + self.packaged_removals[RemovalKind.TAXPAID][tax_class]

    def losses(self, tax_class: TaxClass) -> Decimal:
        return self.bulk_losses[tax_class]

    def additions(self, tax_class: TaxClass) -> Decimal:
        """Volume entering the class from outside the wine inventory."""
        return self.produced[tax_class] + self.spirits_added[tax_class]


class InventoryAggregator:
    """Point-in-time on-hand volume and period activity per tax class.

    Bulk volume for a batch on a date is its latest volume measurement on or
    before that date (or its initial volume when unmeasured) adjusted by every
    recorded flow after the measurement. Transfers move volume between batches,
    so a blended batch carries the merged volume exactly once.
    """

    def __init__(self, records: CellarRecords) -> None:
        self._records = records
        self._runs_by_batch: dict[BatchId, list[PackagingRun]] = defaultdict(list)
        self._transfers_out: dict[BatchId, list[BatchTransfer]] = defaultdict(list)
        self._transfers_in: dict[BatchId, list[BatchTransfer]] = defaultdict(list)
        self._removals_by_run: dict[PackagingRunId, list[Removal]] = defaultdict(list)
        self._bulk_removals: dict[BatchId, list[Removal]] = defaultdict(list)

        for run in records.packaging_runs:
            if not run.voided:
                self._runs_by_batch[run.batch_id].append(run)
        for transfer in records.transfers:
            self._transfers_out[transfer.source_batch_id].append(transfer)
            self._transfers_in[transfer.destination_batch_id].append(transfer)
        for removal in records.removals:
            if removal.packaging_run_id is not None:
                self._removals_by_run[removal.packaging_run_id].append(removal)
            elif removal.batch_id is not None:
                self._bulk_removals[removal.batch_id].append(removal)

    @property
    def records(self) -> CellarRecords:
        return self._records

    # -- point in time ---------------------------------------------------

    def bulk_volume(self, batch: Batch, on: date) -> Decimal:
        """Liters of ``batch`` in vessels at the end of ``on``."""
        if not batch.exists_on(on):
            return Decimal(0)

        base_date = batch.start_date
        base_volume = batch.initial_volume_liters
        include_base_day = True
        # a blend created with its merged volume already holds the start-day transfers
        merged_on_start = batch.origin == BatchOrigin.BLEND and batch.initial_volume_liters != 0
        measured = [
            m
            for m in self._records.measurements
            if m.batch_id == batch.id and m.volume_liters is not None and m.measured_on <= on
        ]
        if measured:
            latest = max(measured, key=lambda m: m.measured_on)
            assert latest.volume_liters is not None
            base_date = latest.measured_on
            base_volume = latest.volume_liters
            include_base_day = False
            merged_on_start = False

        def after_base(day: date) -> bool:
            if day > on:
                return False
            return day >= base_date if include_base_day else day > base_date

        volume = base_volume
        for transfer in self._transfers_in[batch.id]:
            if merged_on_start and transfer.transferred_on == batch.start_date:
                continue
            if after_base(transfer.transferred_on):
                volume += transfer.volume_liters
        for transfer in self._transfers_out[batch.id]:
            if after_base(transfer.transferred_on):
                volume -= transfer.volume_liters + transfer.loss_liters
        for run in self._runs_by_batch[batch.id]:
            if after_base(run.packaged_on):
                volume -= run.volume_taken_liters
        for loss in self._records.losses:
            if loss.batch_id == batch.id and after_base(loss.occurred_on):
                volume -= loss.volume_liters
        for removal in self._bulk_removals[batch.id]:
            if after_base(removal.removed_on):
                volume -= removal.volume_liters
        for shipment in self._records.distillery_shipments:
            if shipment.batch_id == batch.id and after_base(shipment.sent_on):
                volume -= shipment.volume_liters

        if volume < 0:
            raise InvalidVolumeError(
                f"Batch {batch.batch_number} has negative volume {volume} L on {on}",
                batch_id=batch.id,
                as_of=on.isoformat(),
                liters=str(volume),
            )
        return volume

    def packaged_volume(self, run: PackagingRun, on: date) -> Decimal:
        if run.voided or run.packaged_on > on:
            return Decimal(0)
        removed = sum(
            (r.volume_liters for r in self._removals_by_run[run.id] if r.removed_on <= on),
            start=Decimal(0),
        )
        volume = run.packaged_liters - removed
        if volume < 0:
            raise InvalidVolumeError(
                f"Packaging run {run.id} has negative packaged volume {volume} L on {on}",
                packaging_run_id=run.id,
                as_of=on.isoformat(),
                liters=str(volume),
            )
        return volume

    def snapshot(self, as_of: date) -> InventorySnapshot:
        result = InventorySnapshot(as_of=as_of)

        for batch in self._records.batches:
            if not batch.exists_on(as_of):
                continue
            try:
                volume = self.bulk_volume(batch, as_of)
            except InvalidVolumeError as err:
                self._flag(result.unclassified, err, record_id=batch.id)
                continue
            if batch.product_type in SPIRITS_PRODUCT_TYPES:
                result.brandy_liters += volume
                continue
            tax_class = self._classify(
                self._records.batch_snapshot(batch.id, as_of), result.unclassified, record_id=batch.id, volume=volume
            )
            if tax_class is None:
                continue
            result.batches.append(
                BatchVolume(
                    batch_id=batch.id,
                    batch_number=batch.batch_number,
                    name=batch.name,
                    tax_class=tax_class,
                    start_year=batch.start_date.year,
                    liters=volume,
                    in_fermenter=batch.in_fermenter_on(as_of),
                )
            )

        for run in self._records.packaging_runs:
            if run.voided or run.packaged_on > as_of:
                continue
            try:
                volume = self.packaged_volume(run, as_of)
            except InvalidVolumeError as err:
                self._flag(result.unclassified, err, record_id=run.id)
                continue
            batch = self._records.batch(run.batch_id)
            if batch.deleted:
                continue
            tax_class = self._classify(
                self._records.packaging_snapshot(run), result.unclassified, record_id=run.id, volume=volume
            )
            if tax_class is None:
                continue
            result.packages.append(
                PackagedVolume(
                    packaging_run_id=run.id,
                    batch_id=run.batch_id,
                    tax_class=tax_class,
                    start_year=batch.start_date.year,
                    liters=volume,
                )
            )

        return result

    def current_inventory(self, as_of: date, tax_class: TaxClass | None = None) -> InventoryTotals:
        return self.snapshot(as_of).totals(tax_class)

    # -- period activity -------------------------------------------------

    def activity(self, window: DateRange) -> PeriodActivity:
        result = PeriodActivity(window=window)
        records = self._records

        for batch in records.batches:
            if batch.deleted or not window.contains(batch.start_date):
                continue
            if batch.product_type in SPIRITS_PRODUCT_TYPES:
                result.brandy_received_liters += batch.initial_volume_liters
                result.brandy_receipt_count += 1
                continue
            if batch.origin not in PRODUCTION_ORIGINS:
                continue
            if batch.origin in SOURCE_ORIGINS:
                result.batched_from_sources += batch.initial_volume_liters
            tax_class = self._batch_class(batch.id, batch.start_date, result, volume=batch.initial_volume_liters)
            if tax_class is not None:
                result.produced[tax_class] += batch.initial_volume_liters

        for transfer in records.transfers:
            if not window.contains(transfer.transferred_on):
                continue
            self._apply_transfer(transfer, result)

        for run in records.packaging_runs:
            if run.voided or not window.contains(run.packaged_on):
                continue
            bulk_class = self._batch_class(run.batch_id, run.packaged_on, result, volume=run.volume_taken_liters)
            if bulk_class is None:
                continue
            result.bottled_from_bulk[bulk_class] += run.packaged_liters
            result.bulk_losses[bulk_class] += run.loss_liters
            package_class = self._classify(
                records.packaging_snapshot(run), result.issues, record_id=run.id, volume=run.packaged_liters
            )
            if package_class is not None:
                result.bottled_into_packages[package_class] += run.packaged_liters

        for loss in records.losses:
            if not window.contains(loss.occurred_on):
                continue
            tax_class = self._batch_class(loss.batch_id, loss.occurred_on, result, volume=loss.volume_liters)
            if tax_class is not None:
                result.bulk_losses[tax_class] += loss.volume_liters

        for removal in records.removals:
            if not window.contains(removal.removed_on):
                continue
            self._apply_removal(removal, result)

        for shipment in records.distillery_shipments:
            if not window.contains(shipment.sent_on):
                continue
            tax_class = self._batch_class(shipment.batch_id, shipment.sent_on, result, volume=shipment.volume_liters)
            if tax_class is not None:
                result.sent_to_dsp[tax_class] += shipment.volume_liters
                result.dsp_shipment_count += 1

        return result

    def _apply_transfer(self, transfer: BatchTransfer, result: PeriodActivity) -> None:
        source = self._records.batch(transfer.source_batch_id)
        destination = self._records.batch(transfer.destination_batch_id)
        source_is_spirit = source.product_type in SPIRITS_PRODUCT_TYPES
        destination_is_spirit = destination.product_type in SPIRITS_PRODUCT_TYPES

        if source_is_spirit and destination_is_spirit:
            return
        if source_is_spirit:
            dest_class = self._batch_class(destination.id, transfer.transferred_on, result, volume=transfer.volume_liters)
            if dest_class is not None:
                result.spirits_added[dest_class] += transfer.volume_liters
            result.brandy_transfers.append(
                BrandyTransfer(
                    transferred_on=transfer.transferred_on,
                    source_batch=source.batch_number,
                    destination_batch=destination.batch_number,
                    liters=transfer.volume_liters,
                )
            )
            return

        source_class = self._batch_class(source.id, transfer.transferred_on, result, volume=transfer.volume_liters)
        if source_class is None:
            return
        result.bulk_losses[source_class] += transfer.loss_liters
        if destination_is_spirit:
            logger.warning("Transfer %s moves wine into spirits batch %s", transfer.id, destination.batch_number)
            return
        dest_class = self._batch_class(destination.id, transfer.transferred_on, result, volume=transfer.volume_liters)
        if dest_class is None or dest_class == source_class:
            return
        result.transferred_out[source_class] += transfer.volume_liters
        result.transferred_in[dest_class] += transfer.volume_liters

    def _apply_removal(self, removal: Removal, result: PeriodActivity) -> None:
        if removal.batch_id is not None:
            tax_class = self._batch_class(removal.batch_id, removal.removed_on, result, volume=removal.volume_liters)
            target = result.bulk_removals
        else:
            assert removal.packaging_run_id is not None
            run = self._records.packaging_run(removal.packaging_run_id)
            tax_class = self._classify(
                self._records.packaging_snapshot(run), result.issues, record_id=removal.id, volume=removal.volume_liters
            )
            target = result.packaged_removals
        if tax_class is None:
            return
        target[removal.kind][tax_class] += removal.volume_liters
        if removal.kind == RemovalKind.TAXPAID:
            channel = removal.channel or SalesChannel.UNCATEGORIZED
            result.taxpaid_by_channel[channel] += removal.volume_liters

    def _batch_class(self, batch_id: BatchId, on: date, result: PeriodActivity, *, volume: Decimal) -> TaxClass | None:
        batch = self._records.batch(batch_id)
        if batch.deleted:
            return None
        return self._classify(self._records.batch_snapshot(batch_id, on), result.issues, record_id=batch_id, volume=volume)

    def _classify(
        self, snapshot: BatchSnapshot, issues: list[RecordIssue], *, record_id: str, volume: Decimal | None
    ) -> TaxClass | None:
        try:
            return classify(snapshot)
        except ClassificationError as err:
            self._flag(issues, err, record_id=record_id, volume=volume)
            return None

    @staticmethod
    def _flag(
        issues: list[RecordIssue], error: TTBEngineError, *, record_id: str, volume: Decimal | None = None
    ) -> None:
        logger.warning("Excluding record %s from totals: %s", record_id, error)
        issues.append(RecordIssue.from_error(error, record_id=record_id, volume_liters=volume))


def group_by_year(snapshot: InventorySnapshot) -> dict[int, tuple[Decimal, Decimal, int, int]]:
    """(bulk liters, packaged liters, batch count, packaging run count) per batch start year."""
    years: dict[int, tuple[Decimal, Decimal, int, int]] = {}
    for batch in snapshot.batches:
        bulk, packaged, batch_count, item_count = years.get(batch.start_year, (Decimal(0), Decimal(0), 0, 0))
        years[batch.start_year] = (bulk + batch.liters, packaged, batch_count + 1, item_count)
    for package in snapshot.packages:
        bulk, packaged, batch_count, item_count = years.get(package.start_year, (Decimal(0), Decimal(0), 0, 0))
        years[package.start_year] = (bulk, packaged + package.liters, batch_count, item_count + 1)
    return dict(sorted(years.items()))


__all__ = [
    "BatchVolume",
    "BrandyTransfer",
    "InventoryAggregator",
    "InventorySnapshot",
    "InventoryTotals",
    "PackagedVolume",
    "PeriodActivity",
    "RecordIssue",
    "group_by_year",
]
