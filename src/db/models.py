from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class ReconciliationSnapshotOrm(Base):
    __tablename__ = "reconciliation_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    reconciliation_date: Mapped[date] = mapped_column(Date, nullable=False)
    opening_balance_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    period_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    previous_reconciliation_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("reconciliation_snapshots.id"), nullable=True
    )
    ttb_balance: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    current_inventory: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    removals: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    legacy_batches: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    difference: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    is_reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # on_hand_end and the full summary as JSON; new keys are optional on read
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    previous: Mapped["ReconciliationSnapshotOrm | None"] = relationship(remote_side=[id])


class LegacyBatchOrm(Base):
    __tablename__ = "legacy_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    class_key: Mapped[str] = mapped_column(String, nullable=False)
    volume_liters: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class OpeningBalancesOrm(Base):
    __tablename__ = "opening_balances"

    organization_id: Mapped[str] = mapped_column(String, primary_key=True)
    balance_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    balances: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class TTBPeriodSnapshotOrm(Base):
    __tablename__ = "ttb_period_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    period_type: Mapped[str] = mapped_column(String, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    ending: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    form: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "period_type", "period_start", name="uq_period_snapshot_period"),
    )
