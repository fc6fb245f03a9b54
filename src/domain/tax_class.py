from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import Mapping

from pydantic import BaseModel, ConfigDict

from .errors import ClassificationError

HARD_CIDER_MAX_ABV = Decimal("8.5")
STILL_WINE_MAX_ABV = Decimal("16")
WINE_16_TO_21_MAX_ABV = Decimal("21")
WINE_21_TO_24_MAX_ABV = Decimal("24")


class TaxClass(StrEnum):
    HARD_CIDER = "hardCider"
    WINE_UNDER_16 = "wineUnder16"
    WINE_16_TO_21 = "wine16To21"
    WINE_21_TO_24 = "wine21To24"
    CARBONATED_WINE = "carbonatedWine"
    SPARKLING_WINE = "sparklingWine"


class SpiritsClass(StrEnum):
    APPLE_BRANDY = "appleBrandy"
    GRAPE_SPIRITS = "grapeSpirits"


TAX_CLASS_LABELS: dict[TaxClass, str] = {
    TaxClass.HARD_CIDER: "Hard Cider (<8.5% ABV)",
    TaxClass.WINE_UNDER_16: "Wine (<16% ABV)",
    TaxClass.WINE_16_TO_21: "Wine (16-21% ABV)",
    TaxClass.WINE_21_TO_24: "Wine (21-24% ABV)",
    TaxClass.CARBONATED_WINE: "Carbonated Wine",
    TaxClass.SPARKLING_WINE: "Sparkling Wine",
}

SPIRITS_CLASS_LABELS: dict[SpiritsClass, str] = {
    SpiritsClass.APPLE_BRANDY: "Apple Brandy",
    SpiritsClass.GRAPE_SPIRITS: "Grape Spirits",
}

# Presentation-only grouping; never a tax class of its own.
EFFERVESCENT_CLASSES = (TaxClass.CARBONATED_WINE, TaxClass.SPARKLING_WINE)


class ProductType(StrEnum):
    CIDER = "cider"
    PERRY = "perry"
    WINE = "wine"
    POMMEAU = "pommeau"
    BRANDY = "brandy"
    JUICE = "juice"


class CarbonationLevel(StrEnum):
    STILL = "still"
    PETILLANT = "petillant"
    SPARKLING = "sparkling"


CIDER_PRODUCT_TYPES = frozenset({ProductType.CIDER, ProductType.PERRY})
SPIRITS_PRODUCT_TYPES = frozenset({ProductType.BRANDY})


class BatchSnapshot(BaseModel):
    """Classification-relevant attributes of a batch frozen at one point in time."""

    model_config = ConfigDict(frozen=True)

    batch_id: str
    product_type: ProductType
    abv: Decimal | None = None
    carbonation: CarbonationLevel = CarbonationLevel.STILL
    artificially_carbonated: bool = False


def classify(snapshot: BatchSnapshot) -> TaxClass:
    """Assign exactly one tax class; first matching rule wins."""
    if snapshot.product_type in SPIRITS_PRODUCT_TYPES:
        raise ClassificationError(
            f"Batch {snapshot.batch_id} is a spirit, not a wine tax class",
            batch_id=snapshot.batch_id,
            product_type=snapshot.product_type.value,
        )
    abv = snapshot.abv
    if abv is None:
        raise ClassificationError(
            f"Batch {snapshot.batch_id} has no ABV", batch_id=snapshot.batch_id, reason="missing_abv"
        )
    if abv < 0 or abv > WINE_21_TO_24_MAX_ABV:
        raise ClassificationError(
            f"Batch {snapshot.batch_id} ABV {abv} outside wine range",
            batch_id=snapshot.batch_id,
            reason="abv_out_of_range",
            abv=str(abv),
        )

    if snapshot.carbonation == CarbonationLevel.SPARKLING:
        return TaxClass.SPARKLING_WINE
    if snapshot.carbonation == CarbonationLevel.PETILLANT or snapshot.artificially_carbonated:
        return TaxClass.CARBONATED_WINE
    if abv > WINE_16_TO_21_MAX_ABV:
        return TaxClass.WINE_21_TO_24
    if abv > STILL_WINE_MAX_ABV:
        return TaxClass.WINE_16_TO_21
    if snapshot.product_type not in CIDER_PRODUCT_TYPES or abv >= HARD_CIDER_MAX_ABV:
        return TaxClass.WINE_UNDER_16
    return TaxClass.HARD_CIDER


def zero_by_class() -> dict[TaxClass, Decimal]:
    return {tax_class: Decimal(0) for tax_class in TaxClass}


def by_class(values: Mapping[TaxClass, Decimal]) -> dict[TaxClass, Decimal]:
    """Exhaustive copy of ``values``; every tax class must be present."""
    missing = set(TaxClass) - set(values)
    if missing:
        raise KeyError(f"Missing tax classes: {', '.join(sorted(missing))}")
    return {tax_class: values[tax_class] for tax_class in TaxClass}


def effervescent_total(values: Mapping[TaxClass, Decimal]) -> Decimal:
    return sum((values[tax_class] for tax_class in EFFERVESCENT_CLASSES), start=Decimal(0))


__all__ = [
    "BatchSnapshot",
    "CarbonationLevel",
    "EFFERVESCENT_CLASSES",
    "ProductType",
    "SPIRITS_CLASS_LABELS",
    "SpiritsClass",
    "TAX_CLASS_LABELS",
    "TaxClass",
    "by_class",
    "classify",
    "effervescent_total",
    "zero_by_class",
]
