"""Fixed-point money helpers: two decimal places, rounded half up."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: object, field: str = "amount") -> Decimal:
    """Coerce ``value`` into a :class:`~decimal.Decimal` without float drift.

    Floats are routed through ``str`` so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.
    """

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValidationError(f"{field} must be a number") from exc
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def money(value: object, field: str = "amount") -> Decimal:
    """Normalise a numeric value to 2 decimal places using ROUND_HALF_UP."""

    return to_decimal(value, field).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    """Render a Decimal with exactly two fractional digits for JSON payloads."""

    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))
