from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

"""
Money handling (authoritative)

- Prices and totals are stored as integer cents; never as floats.
- Inputs may be int, float, Decimal or a numeric string; they are quantized
  to 2 decimal places (half-up) before conversion.
- Outputs are fixed 2-decimal strings ("1.50").
"""

CENT = Decimal("0.01")


def to_cents(value, field: str = "price") -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, float):
        # repr() keeps the shortest round-tripping form (1.1 -> "1.1")
        value = repr(value)

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        value = stripped

    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int | None) -> str | None:
    if cents is None:
        return None
    return str(cents_to_decimal(cents))
