"""Domain models used by the brokerage_ledger backend.

The classes defined here are lightweight data containers that do not know
anything about persistence or transport concerns.  Monetary fields are always
:class:`~decimal.Decimal` values with two fractional digits.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from .money import ZERO

STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_CANCELLED = "cancelled"

TX_PAYMENT = "payment"
TX_REFUND = "refund"
TX_ADJUSTMENT = "adjustment"

TERMS_OPTIONS = ("Days", "Days Fix", "Days D/A", "Days B/D", "Days A/D")


def utcnow() -> datetime:
    """Current UTC time without tzinfo; every stored timestamp is naive UTC."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(slots=True)
class Party:
    """A customer, seller or buyer.

    :attr:`outstanding` and :attr:`last_transaction_date` are read-side
    projections filled in by the repository; they are never persisted.
    """

    name: str
    contact_person: str
    phone: str
    id: Optional[int] = None
    email: Optional[str] = None
    address: Optional[str] = None
    gstin: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    outstanding: Decimal = ZERO
    last_transaction_date: Optional[datetime] = None


@dataclass(slots=True)
class InvoiceItem:
    """A single line on an invoice."""

    description: str
    quantity: int
    rate: Decimal
    id: Optional[int] = None
    invoice_id: Optional[int] = None

    @property
    def amount(self) -> Decimal:
        return self.rate * self.quantity


@dataclass(slots=True)
class Invoice:
    """An invoice between a seller party and a buyer party.

    ``tax`` is the brokerage amount in the invoice currency and
    ``brokerage_in_inr`` the same figure normalised to the base currency.
    """

    party_id: int
    buyer_id: int
    invoice_date: date
    due_date: date
    id: Optional[int] = None
    invoice_number: str = ""
    invoice_no: Optional[str] = None
    due_days: int = 0
    terms: str = "Days"
    currency: str = "INR"
    exchange_rate: Decimal = Decimal("1.00")
    brokerage_rate: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    brokerage_in_inr: Decimal = ZERO
    received_brokerage: Decimal = ZERO
    balance_brokerage: Decimal = ZERO
    status: str = STATUS_PENDING
    remarks: Optional[str] = None
    notes: Optional[str] = None
    payment_date: Optional[datetime] = None
    items: list[InvoiceItem] = field(default_factory=list)
    party_name: Optional[str] = None
    buyer_name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def involves(self, party_id: int) -> bool:
        return self.party_id == party_id or self.buyer_id == party_id


@dataclass(slots=True)
class Transaction:
    """Money movement against a party, optionally tied to an invoice."""

    amount: Decimal
    date: datetime
    type: str
    party_id: int
    id: Optional[int] = None
    invoice_id: Optional[int] = None
    notes: Optional[str] = None
    invoice_number: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Activity:
    """Append-only timeline entry."""

    type: str
    title: str
    description: str
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None
    party_id: Optional[int] = None
    invoice_id: Optional[int] = None


@dataclass(slots=True)
class FxRate:
    """FX rate as persisted in the local database."""

    base: str
    quote: str
    valuation_date: date
    rate: Decimal
    source: str


__all__ = [
    "Activity",
    "FxRate",
    "Invoice",
    "InvoiceItem",
    "Party",
    "STATUS_CANCELLED",
    "STATUS_PAID",
    "STATUS_PENDING",
    "TERMS_OPTIONS",
    "TX_ADJUSTMENT",
    "TX_PAYMENT",
    "TX_REFUND",
    "Transaction",
    "utcnow",
]
