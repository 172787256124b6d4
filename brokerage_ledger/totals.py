"""Invoice totals: subtotal, brokerage, grand total and due dates.

Everything here is a pure function over :class:`~decimal.Decimal` values.
Each call either returns a complete :class:`InvoiceTotals` or raises
:class:`~brokerage_ledger.errors.ValidationError`; there are no partial
results.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from .currency import to_base
from .errors import ValidationError
from .models import InvoiceItem
from .money import CENT, ZERO, money, to_decimal

HUNDRED = Decimal("100")
_INVOICE_NUMBER = re.compile(r"^INV-(\d{4})-(\d+)$")


@dataclass(frozen=True, slots=True)
class InvoiceTotals:
    """Derived money fields of a single invoice."""

    subtotal: Decimal
    tax: Decimal
    total: Decimal
    brokerage_in_inr: Decimal
    received_brokerage: Decimal
    balance_brokerage: Decimal


def calculate_subtotal(items: Sequence[InvoiceItem]) -> Decimal:
    """Return ``sum(quantity * rate)`` rounded half-up to two places."""

    if not items:
        raise ValidationError("Invoice must contain at least one item")

    subtotal = ZERO
    for position, item in enumerate(items, start=1):
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int):
            raise ValidationError(f"Item {position}: quantity must be a whole number")
        if item.quantity <= 0:
            raise ValidationError(f"Item {position}: quantity must be greater than 0")
        rate = to_decimal(item.rate, "rate")
        if rate < 0:
            raise ValidationError(f"Item {position}: rate cannot be negative")
        subtotal += rate * item.quantity
    return subtotal.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_brokerage(subtotal: Decimal, brokerage_rate: object) -> Decimal:
    """Brokerage at ``brokerage_rate`` percent of ``subtotal``."""

    rate = to_decimal(brokerage_rate, "brokerage_rate")
    if rate < 0:
        raise ValidationError("Brokerage rate cannot be negative")
    return (subtotal * rate / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_totals(
    items: Sequence[InvoiceItem],
    *,
    tax: Optional[object] = None,
    brokerage_rate: Optional[object] = None,
    exchange_rate: object = Decimal("1.00"),
    received_brokerage: object = ZERO,
) -> InvoiceTotals:
    """Compute every derived money field of an invoice.

    The brokerage (``tax``) is either a fixed amount or a percentage of the
    subtotal, never both.  ``brokerage_in_inr`` is the brokerage converted at
    ``exchange_rate``; already received brokerage may not exceed it.
    """

    if tax is not None and brokerage_rate is not None:
        raise ValidationError("Supply either a fixed brokerage amount or a brokerage rate, not both")

    subtotal = calculate_subtotal(items)
    if tax is not None:
        brokerage = money(tax, "tax")
        if brokerage < 0:
            raise ValidationError("Brokerage amount cannot be negative")
    elif brokerage_rate is not None:
        brokerage = calculate_brokerage(subtotal, brokerage_rate)
    else:
        brokerage = ZERO

    brokerage_in_inr = to_base(brokerage, exchange_rate)
    received = money(received_brokerage, "received_brokerage")
    if received < 0:
        raise ValidationError("Received brokerage cannot be negative")
    if received > brokerage_in_inr:
        raise ValidationError("Received brokerage cannot exceed brokerage in INR")

    return InvoiceTotals(
        subtotal=subtotal,
        tax=brokerage,
        total=subtotal + brokerage,
        brokerage_in_inr=brokerage_in_inr,
        received_brokerage=received,
        balance_brokerage=brokerage_in_inr - received,
    )


def calculate_due_date(invoice_date: date, due_days: int) -> date:
    if due_days < 0:
        raise ValidationError("Due days must be a positive number")
    return invoice_date + timedelta(days=due_days)


def next_invoice_number(existing_numbers: Iterable[str], year: int) -> str:
    """Return the next ``INV-YYYY-NNNN`` number.

    The sequence continues from the highest number seen in any year, matching
    how numbers have always been issued; the year part is informational.
    Numbers that do not follow the pattern (custom imports) are ignored.
    """

    highest = 0
    for number in existing_numbers:
        match = _INVOICE_NUMBER.match(number or "")
        if match:
            highest = max(highest, int(match.group(2)))
    return f"INV-{year}-{highest + 1:04d}"
