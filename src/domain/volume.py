from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, model_validator

from .errors import InvalidVolumeError

LITERS_PER_WINE_GALLON = Decimal("3.785411784")
LITERS_PER_MILLILITER = Decimal("0.001")
POUNDS_PER_KILOGRAM = Decimal("2.20462")
ZERO = Decimal(0)


class VolumeUnit(StrEnum):
    LITERS = "L"
    WINE_GALLONS = "gal"
    MILLILITERS = "mL"


class VolumeAmount(BaseModel):
    """A non-negative volume with its unit."""

    model_config = ConfigDict(frozen=True)

    magnitude: Decimal
    unit: VolumeUnit

    @model_validator(mode="after")
    def _validate_magnitude(self) -> VolumeAmount:
        _check_magnitude(self.magnitude, self.unit)
        return self


def _check_magnitude(magnitude: Decimal, unit: VolumeUnit | str) -> Decimal:
    if not isinstance(magnitude, Decimal):
        magnitude = Decimal(str(magnitude))
    if not magnitude.is_finite():
        raise InvalidVolumeError(f"Volume must be finite, got {magnitude} {unit}", magnitude=str(magnitude), unit=str(unit))
    if magnitude < 0:
        raise InvalidVolumeError(f"Volume must be >= 0, got {magnitude} {unit}", magnitude=str(magnitude), unit=str(unit))
    return magnitude


def to_canonical(magnitude: Decimal, from_unit: VolumeUnit) -> VolumeAmount:
    """Convert a magnitude in ``from_unit`` to liters."""
    magnitude = _check_magnitude(magnitude, from_unit)
    if from_unit == VolumeUnit.LITERS:
        liters = magnitude
    elif from_unit == VolumeUnit.WINE_GALLONS:
        liters = magnitude * LITERS_PER_WINE_GALLON
    else:
        liters = magnitude * LITERS_PER_MILLILITER
    return VolumeAmount(magnitude=liters, unit=VolumeUnit.LITERS)


def to_wine_gallons(amount: VolumeAmount) -> VolumeAmount:
    liters = to_canonical(amount.magnitude, amount.unit).magnitude
    return VolumeAmount(magnitude=liters / LITERS_PER_WINE_GALLON, unit=VolumeUnit.WINE_GALLONS)


def liters(magnitude: Decimal | int | str) -> Decimal:
    """Validated liters magnitude."""
    return to_canonical(Decimal(str(magnitude)), VolumeUnit.LITERS).magnitude


def gallons_to_liters(gallons: Decimal) -> Decimal:
    return to_canonical(gallons, VolumeUnit.WINE_GALLONS).magnitude


def liters_to_gallons(value: Decimal) -> Decimal:
    """Signed liters -> wine gallons.

    Differences and variances may be negative, so this skips the
    non-negative check applied to measured volumes.
    """
    return value / LITERS_PER_WINE_GALLON


def kilograms_to_pounds(kilograms: Decimal) -> Decimal:
    return kilograms * POUNDS_PER_KILOGRAM


__all__ = [
    "LITERS_PER_WINE_GALLON",
    "POUNDS_PER_KILOGRAM",
    "VolumeAmount",
    "VolumeUnit",
    "ZERO",
    "gallons_to_liters",
    "kilograms_to_pounds",
    "liters",
    "liters_to_gallons",
    "to_canonical",
    "to_wine_gallons",
]
