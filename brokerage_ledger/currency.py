"""Conversion of invoice-currency amounts into the base reporting currency."""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .config import BASE_CURRENCY
from .errors import ValidationError
from .money import CENT, money, to_decimal

ONE = Decimal("1.00")
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def normalise_currency_code(code: Optional[str], default: str = BASE_CURRENCY) -> str:
    """Return an upper-case ISO 4217 code, falling back to ``default``."""

    if code is None or not code.strip():
        return default.upper()
    cleaned = code.strip().upper()
    if not _CURRENCY_CODE.match(cleaned):
        raise ValidationError(f"Invalid currency code: {code!r}")
    return cleaned


def validate_exchange_rate(exchange_rate: object) -> Decimal:
    rate = to_decimal(exchange_rate, "exchange_rate")
    if rate <= 0:
        raise ValidationError("Exchange rate must be greater than 0")
    return rate


def to_base(amount: object, exchange_rate: object) -> Decimal:
    """Convert ``amount`` into the base currency: ``round(amount * rate, 2)``."""

    rate = validate_exchange_rate(exchange_rate)
    return (to_decimal(amount) * rate).quantize(CENT, rounding=ROUND_HALF_UP)


def from_base(amount: object, exchange_rate: object) -> Decimal:
    """Convert a base-currency amount back using the reciprocal rate."""

    rate = validate_exchange_rate(exchange_rate)
    return (to_decimal(amount) / rate).quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_exchange_rate(
    currency: str,
    exchange_rate: Optional[object],
    base_currency: str = BASE_CURRENCY,
) -> Decimal:
    """Return the rate an invoice in ``currency`` should be stored with.

    Invoices in the base currency always use ``1.00`` whatever was
    submitted. Foreign-currency invoices must supply a positive rate.
    """

    if currency.upper() == base_currency.upper():
        return ONE
    if exchange_rate is None:
        raise ValidationError(f"Exchange rate is required for {currency} invoices")
    # Rates are stored with two decimal places.
    rate = money(validate_exchange_rate(exchange_rate), "exchange_rate")
    if rate <= 0:
        raise ValidationError("Exchange rate must be at least 0.01")
    return rate
