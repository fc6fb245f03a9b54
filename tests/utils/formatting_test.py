from decimal import Decimal

import pytest

from utils.formatting import format_currency, format_decimal, format_gallons, format_signed_gallons


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (Decimal("12.34"), "12.3"),
        (Decimal("12.35"), "12.4"),
        (Decimal("-0.04"), "0.0"),
        (Decimal("1E+3"), "1000.0"),
        (Decimal(0), "0.0"),
    ],
)
def test_format_gallons(value: Decimal, expected: str) -> None:
    assert format_gallons(value) == expected


def test_format_signed_gallons() -> None:
    assert format_signed_gallons(Decimal(5)) == "+5.0"
    assert format_signed_gallons(Decimal("-2.25")) == "-2.3"
    assert format_signed_gallons(Decimal("0.04")) == "0.0"


def test_format_currency() -> None:
    assert format_currency(Decimal("17.005")) == "17.01"
    assert format_currency(Decimal("-0.001")) == "0.00"


def test_format_decimal() -> None:
    assert format_decimal(Decimal("2.500")) == "2.5"
    assert format_decimal(Decimal("1E+3")) == "1000"
