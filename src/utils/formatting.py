from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_gallons(value: Decimal) -> str:
    tenths = value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    if tenths == 0:
        tenths = abs(tenths)
    return f"{tenths:.1f}"


def format_currency(value: Decimal) -> str:
    cents = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if cents == 0:
        cents = abs(cents)
    return f"{cents:.2f}"


def format_signed_gallons(value: Decimal) -> str:
    text = format_gallons(value)
    if not text.startswith("-") and value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP) > 0:
        return f"+{text}"
    return text
