from __future__ import annotations

import calendar
from datetime import date, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, model_validator

MONTH_NAMES = tuple(calendar.month_name)[1:]


class PeriodType(StrEnum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class DateRange(BaseModel):
    """Inclusive calendar date range."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def _validate_order(self) -> DateRange:
        if self.start > self.end:
            raise ValueError(f"DateRange start {self.start} is after end {self.end}")
        return self

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def day_before_start(self) -> date:
        return self.start - timedelta(days=1)

    @property
    def day_after_end(self) -> date:
        return self.end + timedelta(days=1)

    @classmethod
    def for_period(cls, period_type: PeriodType, year: int, number: int | None = None) -> DateRange:
        if period_type == PeriodType.MONTHLY:
            month = number or 1
            if not 1 <= month <= 12:
                raise ValueError(f"month must be 1-12, got {month}")
            last_day = calendar.monthrange(year, month)[1]
            return cls(start=date(year, month, 1), end=date(year, month, last_day))
        if period_type == PeriodType.QUARTERLY:
            quarter = number or 1
            if not 1 <= quarter <= 4:
                raise ValueError(f"quarter must be 1-4, got {quarter}")
            start_month = (quarter - 1) * 3 + 1
            end_month = start_month + 2
            last_day = calendar.monthrange(year, end_month)[1]
            return cls(start=date(year, start_month, 1), end=date(year, end_month, last_day))
        return cls(start=date(year, 1, 1), end=date(year, 12, 31))


def period_label(period_type: PeriodType, year: int, number: int | None = None) -> str:
    if period_type == PeriodType.MONTHLY:
        return f"{MONTH_NAMES[(number or 1) - 1]} {year}"
    if period_type == PeriodType.QUARTERLY:
        return f"Q{number or 1} {year}"
    return str(year)


__all__ = ["DateRange", "PeriodType", "period_label"]
