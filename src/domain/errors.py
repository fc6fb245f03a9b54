from __future__ import annotations

from typing import Any


class TTBEngineError(Exception):
    """Base class for structured engine errors.

    ``kind`` is a stable machine-readable identifier and ``context`` carries the
    record identifiers and figures needed to render targeted guidance.
    """

    kind = "engine_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context


class InvalidVolumeError(TTBEngineError):
    kind = "invalid_volume"


class ClassificationError(TTBEngineError):
    kind = "classification"


class LedgerImbalanceError(TTBEngineError):
    kind = "ledger_imbalance"

    def __init__(
        self,
        message: str,
        *,
        ledger: str,
        line: str,
        tax_class: str | None = None,
        expected: object = None,
        computed: object = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message,
            ledger=ledger,
            line=line,
            tax_class=tax_class,
            expected=expected,
            computed=computed,
            **context,
        )
        self.ledger = ledger
        self.line = line
        self.tax_class = tax_class
        self.expected = expected
        self.computed = computed


class SnapshotNotFoundError(TTBEngineError):
    kind = "snapshot_not_found"


class PeriodSnapshotFinalizedError(TTBEngineError):
    kind = "period_snapshot_finalized"


class RateNotFoundError(TTBEngineError):
    kind = "rate_not_found"


__all__ = [
    "ClassificationError",
    "InvalidVolumeError",
    "LedgerImbalanceError",
    "PeriodSnapshotFinalizedError",
    "RateNotFoundError",
    "SnapshotNotFoundError",
    "TTBEngineError",
]
