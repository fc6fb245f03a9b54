from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from pathlib import Path

from domain.tax import CreditTier, RateTable, TaxRate
from domain.tax_class import TaxClass

logger = logging.getLogger(__name__)

STATUTORY_FROM = date(2018, 1, 1)

# 26 U.S.C. 5041(c) tiers for wine: first 30,000 gal, next 100,000, next 620,000.
_WINE_CREDIT_TIERS = [
    CreditTier(gallons=Decimal("30000"), credit_rate=Decimal("1.00")),
    CreditTier(gallons=Decimal("100000"), credit_rate=Decimal("0.90")),
    CreditTier(gallons=Decimal("620000"), credit_rate=Decimal("0.535")),
]

_DEFAULT_RATES: dict[TaxClass, tuple[Decimal, list[CreditTier]]] = {
    TaxClass.HARD_CIDER: (
        Decimal("0.226"),
        [CreditTier(gallons=Decimal("30000"), credit_rate=Decimal("0.056"))],
    ),
    TaxClass.WINE_UNDER_16: (Decimal("1.07"), _WINE_CREDIT_TIERS),
    TaxClass.WINE_16_TO_21: (Decimal("1.57"), _WINE_CREDIT_TIERS),
    TaxClass.WINE_21_TO_24: (Decimal("3.15"), _WINE_CREDIT_TIERS),
    TaxClass.CARBONATED_WINE: (Decimal("3.30"), _WINE_CREDIT_TIERS),
    TaxClass.SPARKLING_WINE: (Decimal("3.40"), _WINE_CREDIT_TIERS),
}


def default_rate_table() -> RateTable:
    return RateTable(
        rates=[
            TaxRate(tax_class=tax_class, rate=rate, effective_from=STATUTORY_FROM, credit_tiers=list(tiers))
            for tax_class, (rate, tiers) in _DEFAULT_RATES.items()
        ]
    )


def load_rate_table(path: Path | None = None) -> RateTable:
    """The bundled default table, or the table in ``path`` replacing it entirely."""
    if path is None:
        return default_rate_table()
    with path.open("r", encoding="utf-8") as handle:
        table = RateTable.model_validate_json(handle.read())
    logger.info("Loaded %d tax rates from %s", len(table.rates), path)
    return table


__all__ = ["default_rate_table", "load_rate_table"]
