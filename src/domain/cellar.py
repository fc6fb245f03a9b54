"""Cellar records consumed by the engine.

These are the already-materialized batch, vessel and sales records produced by
the production services. The engine never mutates them; every aggregation is a
pure function of a ``CellarRecords`` value and an explicit reference date.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import NewType

from pydantic import BaseModel, Field, model_validator

from .tax_class import BatchSnapshot, CarbonationLevel, ProductType, TaxClass
from .volume import VolumeUnit, liters, to_canonical

BatchId = NewType("BatchId", str)
PackagingRunId = NewType("PackagingRunId", str)


class BatchOrigin(StrEnum):
    PRESS_RUN = "PRESS_RUN"
    JUICE_PURCHASE = "JUICE_PURCHASE"
    BLEND = "BLEND"
    DSP_RECEIPT = "DSP_RECEIPT"
    OTHER = "OTHER"


class LossKind(StrEnum):
    RACKING = "RACKING"
    FILTERING = "FILTERING"
    OTHER = "OTHER"


class RemovalKind(StrEnum):
    TAXPAID = "TAXPAID"
    TAX_FREE = "TAX_FREE"
    EXPORT = "EXPORT"
    SAMPLE = "SAMPLE"
    BREAKAGE = "BREAKAGE"
    SPOILAGE = "SPOILAGE"
    DESTROYED = "DESTROYED"


class SalesChannel(StrEnum):
    TASTING_ROOM = "tasting_room"
    WHOLESALE = "wholesale"
    ONLINE_DTC = "online_dtc"
    EVENTS = "events"
    UNCATEGORIZED = "uncategorized"


class Batch(BaseModel):
    id: BatchId
    batch_number: str
    name: str = ""
    product_type: ProductType = ProductType.CIDER
    start_date: date
    end_date: date | None = None
    initial_volume_liters: Decimal
    abv: Decimal | None = None
    carbonation: CarbonationLevel = CarbonationLevel.STILL
    artificially_carbonated: bool = False
    origin: BatchOrigin = BatchOrigin.OTHER
    origin_id: str | None = None
    fermentation_completed_on: date | None = None
    deleted: bool = False

    @model_validator(mode="after")
    def _validate_fields(self) -> Batch:
        if not self.batch_number:
            raise ValueError("Batch.batch_number must be non-empty")
        liters(self.initial_volume_liters)
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError(f"Batch {self.id} ends before it starts")
        return self

    def exists_on(self, day: date) -> bool:
        """Whether the batch holds volume in a vessel on ``day``."""
        if self.deleted or self.start_date > day:
            return False
        return self.end_date is None or self.end_date > day

    def in_fermenter_on(self, day: date) -> bool:
        if not self.exists_on(day):
            return False
        return self.fermentation_completed_on is None or self.fermentation_completed_on > day


class BatchMeasurement(BaseModel):
    batch_id: BatchId
    measured_on: date
    volume_liters: Decimal | None = None
    abv: Decimal | None = None
    carbonation: CarbonationLevel | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> BatchMeasurement:
        if self.volume_liters is not None:
            liters(self.volume_liters)
        return self


class BatchTransfer(BaseModel):
    """Volume moved between batches: racking into a blend, fortification, merges."""

    id: str
    source_batch_id: BatchId
    destination_batch_id: BatchId
    transferred_on: date
    volume_liters: Decimal
    loss_liters: Decimal = Decimal(0)

    @model_validator(mode="after")
    def _validate_fields(self) -> BatchTransfer:
        liters(self.volume_liters)
        liters(self.loss_liters)
        if self.source_batch_id == self.destination_batch_id:
            raise ValueError(f"Transfer {self.id} moves a batch into itself")
        return self


class BatchLoss(BaseModel):
    batch_id: BatchId
    occurred_on: date
    volume_liters: Decimal
    kind: LossKind = LossKind.OTHER

    @model_validator(mode="after")
    def _validate_fields(self) -> BatchLoss:
        liters(self.volume_liters)
        return self


class PackagingRun(BaseModel):
    """Bottling, canning or kegging of bulk volume from one batch.

    ``abv`` and carbonation override the batch's attributes when the packaged
    product differs from the bulk (bottle conditioning, forced carbonation).
    """

    id: PackagingRunId
    batch_id: BatchId
    packaged_on: date
    volume_taken_liters: Decimal
    loss_liters: Decimal = Decimal(0)
    voided: bool = False
    abv: Decimal | None = None
    carbonation: CarbonationLevel | None = None
    artificially_carbonated: bool | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> PackagingRun:
        liters(self.volume_taken_liters)
        liters(self.loss_liters)
        if self.loss_liters > self.volume_taken_liters:
            raise ValueError(f"PackagingRun {self.id} loss exceeds volume taken")
        return self

    @property
    def packaged_liters(self) -> Decimal:
        return self.volume_taken_liters - self.loss_liters


class Removal(BaseModel):
    """Volume leaving the premises or destroyed, from bulk or from packages."""

    id: str
    removed_on: date
    volume_liters: Decimal
    kind: RemovalKind = RemovalKind.TAXPAID
    channel: SalesChannel | None = None
    packaging_run_id: PackagingRunId | None = None
    batch_id: BatchId | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> Removal:
        liters(self.volume_liters)
        if (self.packaging_run_id is None) == (self.batch_id is None):
            raise ValueError(f"Removal {self.id} must reference exactly one of packaging_run_id or batch_id")
        return self


class DistilleryShipment(BaseModel):
    """Cider sent to a distilled spirits plant (DSP) for brandy production."""

    id: str
    batch_id: BatchId
    sent_on: date
    volume_liters: Decimal

    @model_validator(mode="after")
    def _validate_fields(self) -> DistilleryShipment:
        liters(self.volume_liters)
        return self


class PressRun(BaseModel):
    id: str
    completed_on: date | None = None
    juice_volume_liters: Decimal
    completed: bool = True
    deleted: bool = False
    tax_class: TaxClass = TaxClass.HARD_CIDER

    @model_validator(mode="after")
    def _validate_fields(self) -> PressRun:
        liters(self.juice_volume_liters)
        return self

    @property
    def counts(self) -> bool:
        return self.completed and not self.deleted and self.completed_on is not None


class JuicePurchase(BaseModel):
    id: str
    purchased_on: date
    volume: Decimal
    unit: VolumeUnit = VolumeUnit.LITERS
    deleted: bool = False
    tax_class: TaxClass = TaxClass.HARD_CIDER

    @model_validator(mode="after")
    def _validate_fields(self) -> JuicePurchase:
        to_canonical(self.volume, self.unit)
        return self

    @property
    def volume_liters(self) -> Decimal:
        return to_canonical(self.volume, self.unit).magnitude


class FruitPurchase(BaseModel):
    purchased_on: date
    fruit_type: str
    quantity_kg: Decimal

    @property
    def is_apple(self) -> bool:
        return self.fruit_type.strip().lower() == "apple"


class AdditivePurchase(BaseModel):
    purchased_on: date
    name: str
    quantity: Decimal
    unit: str = "kg"


class CellarRecords(BaseModel):
    batches: list[Batch] = Field(default_factory=list)
    measurements: list[BatchMeasurement] = Field(default_factory=list)
    transfers: list[BatchTransfer] = Field(default_factory=list)
    losses: list[BatchLoss] = Field(default_factory=list)
    packaging_runs: list[PackagingRun] = Field(default_factory=list)
    removals: list[Removal] = Field(default_factory=list)
    distillery_shipments: list[DistilleryShipment] = Field(default_factory=list)
    press_runs: list[PressRun] = Field(default_factory=list)
    juice_purchases: list[JuicePurchase] = Field(default_factory=list)
    fruit_purchases: list[FruitPurchase] = Field(default_factory=list)
    additive_purchases: list[AdditivePurchase] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_references(self) -> CellarRecords:
        batch_ids = {batch.id for batch in self.batches}
        if len(batch_ids) != len(self.batches):
            raise ValueError("Duplicate batch ids in cellar records")
        run_ids = {run.id for run in self.packaging_runs}
        for run in self.packaging_runs:
            if run.batch_id not in batch_ids:
                raise ValueError(f"PackagingRun {run.id} references unknown batch {run.batch_id}")
        for transfer in self.transfers:
            for batch_id in (transfer.source_batch_id, transfer.destination_batch_id):
                if batch_id not in batch_ids:
                    raise ValueError(f"Transfer {transfer.id} references unknown batch {batch_id}")
        for removal in self.removals:
            if removal.packaging_run_id is not None and removal.packaging_run_id not in run_ids:
                raise ValueError(f"Removal {removal.id} references unknown packaging run {removal.packaging_run_id}")
            if removal.batch_id is not None and removal.batch_id not in batch_ids:
                raise ValueError(f"Removal {removal.id} references unknown batch {removal.batch_id}")
        return self

    def batch(self, batch_id: BatchId) -> Batch:
        for batch in self.batches:
            if batch.id == batch_id:
                return batch
        raise KeyError(batch_id)

    def packaging_run(self, run_id: PackagingRunId) -> PackagingRun:
        for run in self.packaging_runs:
            if run.id == run_id:
                return run
        raise KeyError(run_id)

    def batch_snapshot(self, batch_id: BatchId, on: date) -> BatchSnapshot:
        """Classification attributes of a batch as they stood on ``on``.

        The latest measurement on or before ``on`` that records an ABV (or a
        carbonation level) wins over the batch's declared attributes.
        """
        batch = self.batch(batch_id)
        abv = batch.abv
        carbonation = batch.carbonation
        measurements = sorted(
            (m for m in self.measurements if m.batch_id == batch_id and m.measured_on <= on),
            key=lambda m: m.measured_on,
        )
        for measurement in measurements:
            if measurement.abv is not None:
                abv = measurement.abv
            if measurement.carbonation is not None:
                carbonation = measurement.carbonation
        return BatchSnapshot(
            batch_id=batch.id,
            product_type=batch.product_type,
            abv=abv,
            carbonation=carbonation,
            artificially_carbonated=batch.artificially_carbonated,
        )

    def packaging_snapshot(self, run: PackagingRun) -> BatchSnapshot:
        base = self.batch_snapshot(run.batch_id, run.packaged_on)
        return BatchSnapshot(
            batch_id=base.batch_id,
            product_type=base.product_type,
            abv=run.abv if run.abv is not None else base.abv,
            carbonation=run.carbonation if run.carbonation is not None else base.carbonation,
            artificially_carbonated=(
                run.artificially_carbonated
                if run.artificially_carbonated is not None
                else base.artificially_carbonated
            ),
        )


__all__ = [
    "AdditivePurchase",
    "Batch",
    "BatchId",
    "BatchLoss",
    "BatchMeasurement",
    "BatchOrigin",
    "BatchTransfer",
    "CellarRecords",
    "DistilleryShipment",
    "FruitPurchase",
    "JuicePurchase",
    "LossKind",
    "PackagingRun",
    "PackagingRunId",
    "PressRun",
    "Removal",
    "RemovalKind",
    "SalesChannel",
]
