from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats do not drag binary noise into Decimal
    return Decimal(str(value))


def usd(value) -> Decimal:
    """Quantize to cents, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_usd(value) -> str:
    """$1,234.50"""
    return f"${usd(value):,.2f}"
