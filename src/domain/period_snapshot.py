from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from .period import DateRange, PeriodType
from .tax_class import TaxClass, zero_by_class


class PeriodSnapshotStatus(StrEnum):
    DRAFT = "draft"
    FINALIZED = "finalized"


class BeginningSource(StrEnum):
    FINALIZED_SNAPSHOT = "finalized_snapshot"
    OPENING_BALANCES = "opening_balances"
    CALCULATED = "calculated"


class BeginningInventory(BaseModel):
    """On-hand wine gallons at the start of a reporting period and where they came from."""

    source: BeginningSource
    bulk: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    bottled: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    snapshot_id: int | None = None


class TTBPeriodSnapshot(BaseModel):
    id: int | None = None
    organization_id: str
    period_type: PeriodType
    year: int
    number: int | None = None
    period: DateRange
    status: PeriodSnapshotStatus = PeriodSnapshotStatus.DRAFT
    ending_bulk: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    ending_bottled: dict[TaxClass, Decimal] = Field(default_factory=zero_by_class)
    form: dict[str, Any] = Field(default_factory=dict)
    finalized_at: datetime | None = None

    @property
    def is_finalized(self) -> bool:
        return self.status == PeriodSnapshotStatus.FINALIZED

    @property
    def period_end(self) -> date:
        return self.period.end


__all__ = ["BeginningInventory", "BeginningSource", "PeriodSnapshotStatus", "TTBPeriodSnapshot"]
