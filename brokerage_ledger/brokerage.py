"""Received vs. balance brokerage bookkeeping for a single invoice.

The functions never mutate their input; they return an updated copy of the
invoice together with the :class:`~brokerage_ledger.models.Activity` the
caller should persist.  Callers that write the result back to storage must do
so inside :meth:`SQLiteRepository.transaction` so two payments cannot read the
same balance.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from .errors import ValidationError
from .models import (
    STATUS_CANCELLED,
    STATUS_PAID,
    STATUS_PENDING,
    TX_PAYMENT,
    TX_REFUND,
    Activity,
    Invoice,
    Transaction,
    utcnow,
)
from .money import ZERO, format_money, money


@dataclass(frozen=True, slots=True)
class PaymentOutcome:
    invoice: Invoice
    activity: Activity


@dataclass(frozen=True, slots=True)
class BrokerageLedgerEntry:
    brokerage_in_inr: Decimal
    received_brokerage: Decimal
    balance_brokerage: Decimal


def _positive(amount: object) -> Decimal:
    value = money(amount)
    if value <= 0:
        raise ValidationError("Amount must be greater than 0")
    return value


def apply_payment(invoice: Invoice, amount: object, *, when: Optional[datetime] = None) -> PaymentOutcome:
    """Record ``amount`` of received brokerage against ``invoice``.

    Overpayment is rejected: after every successful call
    ``received_brokerage <= brokerage_in_inr`` holds.  A pending invoice whose
    balance reaches zero becomes paid.
    """

    value = _positive(amount)
    if invoice.status == STATUS_CANCELLED:
        raise ValidationError("Cannot record a payment against a cancelled invoice")

    received = invoice.received_brokerage + value
    if received > invoice.brokerage_in_inr:
        raise ValidationError(
            f"Payment of {format_money(value)} exceeds balance brokerage of "
            f"{format_money(invoice.balance_brokerage)}"
        )

    when = when or utcnow()
    balance = invoice.brokerage_in_inr - received
    status = invoice.status
    payment_date = invoice.payment_date
    if balance == ZERO and status == STATUS_PENDING:
        status = STATUS_PAID
        payment_date = when

    updated = replace(
        invoice,
        received_brokerage=received,
        balance_brokerage=balance,
        status=status,
        payment_date=payment_date,
        updated_at=when,
    )
    activity = Activity(
        type="payment_received",
        title="Payment recorded",
        description=(
            f"INR {format_money(value)} brokerage received for invoice "
            f"#{invoice.invoice_number}; balance INR {format_money(balance)}"
        ),
        timestamp=when,
        party_id=invoice.party_id,
        invoice_id=invoice.id,
    )
    return PaymentOutcome(invoice=updated, activity=activity)


def apply_refund(invoice: Invoice, amount: object, *, when: Optional[datetime] = None) -> PaymentOutcome:
    """Give back ``amount`` of previously received brokerage."""

    value = _positive(amount)
    received = invoice.received_brokerage - value
    if received < 0:
        raise ValidationError(
            f"Refund of {format_money(value)} exceeds received brokerage of "
            f"{format_money(invoice.received_brokerage)}"
        )

    when = when or utcnow()
    balance = invoice.brokerage_in_inr - received
    status = invoice.status
    payment_date = invoice.payment_date
    if balance > 0 and status == STATUS_PAID:
        status = STATUS_PENDING
        payment_date = None

    updated = replace(
        invoice,
        received_brokerage=received,
        balance_brokerage=balance,
        status=status,
        payment_date=payment_date,
        updated_at=when,
    )
    activity = Activity(
        type="refund_issued",
        title="Refund recorded",
        description=(
            f"INR {format_money(value)} brokerage refunded for invoice "
            f"#{invoice.invoice_number}; balance INR {format_money(balance)}"
        ),
        timestamp=when,
        party_id=invoice.party_id,
        invoice_id=invoice.id,
    )
    return PaymentOutcome(invoice=updated, activity=activity)


def reconcile_status(invoice: Invoice, *, when: Optional[datetime] = None) -> Invoice:
    """Bring a pending/paid status back in line with recomputed totals.

    A paid invoice that owes brokerage again is reopened; a pending invoice
    whose brokerage is fully received is settled.  Cancelled invoices and
    invoices without brokerage keep their status.
    """

    if invoice.status == STATUS_PAID and invoice.balance_brokerage > 0:
        return replace(invoice, status=STATUS_PENDING, payment_date=None)
    if invoice.status == STATUS_PENDING and invoice.brokerage_in_inr > 0 and invoice.balance_brokerage == ZERO:
        return replace(invoice, status=STATUS_PAID, payment_date=when or utcnow())
    return invoice


def ledger_for(invoice: Invoice, transactions: Iterable[Transaction]) -> BrokerageLedgerEntry:
    """Rebuild the received/balance figures from the transaction history.

    Only payments and refunds linked to ``invoice`` count; they are replayed
    in date order through the same rules as :func:`apply_payment`, so an
    inconsistent history raises instead of producing a negative balance.
    """

    replay = replace(
        invoice,
        received_brokerage=ZERO,
        balance_brokerage=invoice.brokerage_in_inr,
        status=STATUS_PENDING,
    )
    relevant = sorted(
        (tx for tx in transactions if tx.invoice_id == invoice.id and tx.type in {TX_PAYMENT, TX_REFUND}),
        key=lambda tx: (tx.date, tx.id or 0),
    )
    for tx in relevant:
        if tx.type == TX_PAYMENT:
            replay = apply_payment(replay, tx.amount, when=tx.date).invoice
        else:
            replay = apply_refund(replay, tx.amount, when=tx.date).invoice
    return BrokerageLedgerEntry(
        brokerage_in_inr=replay.brokerage_in_inr,
        received_brokerage=replay.received_brokerage,
        balance_brokerage=replay.balance_brokerage,
    )
