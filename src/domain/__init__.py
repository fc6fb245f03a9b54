"""Domain models and computations for the TTB reconciliation engine.

This package contains in-memory (Pydantic) models for cellar records,
reconciliations and TTB 5120.17 forms, plus the pure functions computing them.
They are independent from persistence models so that business logic and
testing can evolve without DB coupling.
"""

__all__ = [
    "cellar",
    "errors",
    "inventory",
    "period",
    "period_snapshot",
    "production_audit",
    "reconciliation",
    "tax",
    "tax_class",
    "ttb_form",
    "volume",
]
