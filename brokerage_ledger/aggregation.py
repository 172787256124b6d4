"""Roll-ups of invoice collections: outstanding dues, sales and brokerage.

Every function accepts any iterable of invoices and produces the same result
regardless of the order the invoices arrive in.  Sums are accumulated as
:class:`~decimal.Decimal` values with two fractional digits.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .currency import to_base
from .errors import ValidationError
from .models import STATUS_CANCELLED, STATUS_PENDING, Invoice
from .money import CENT, ZERO

GROUPINGS = ("daily", "weekly", "monthly", "quarterly")


@dataclass(slots=True)
class CurrencySummary:
    """Per-currency totals for a set of invoices."""

    currency: str
    total_sales: Decimal = ZERO
    total_brokerage: Decimal = ZERO
    received_brokerage: Decimal = ZERO
    outstanding_invoices_count: int = 0
    invoice_count: int = 0

    @property
    def outstanding_brokerage(self) -> Decimal:
        return self.total_brokerage - self.received_brokerage


@dataclass(frozen=True, slots=True)
class OutstandingInvoice:
    invoice: Invoice
    days_overdue: int


@dataclass(slots=True)
class SalesPeriod:
    key: str
    label: str
    invoice_count: int = 0
    gross_sales: Decimal = ZERO
    tax: Decimal = ZERO
    net_sales: Decimal = ZERO

    def add(self, invoice: Invoice) -> None:
        self.invoice_count += 1
        self.gross_sales += invoice.subtotal
        self.tax += invoice.tax
        self.net_sales += invoice.total


@dataclass(slots=True)
class SalesReport:
    group_by: str
    from_date: date
    to_date: date
    periods: list[SalesPeriod] = field(default_factory=list)
    totals: SalesPeriod = field(default_factory=lambda: SalesPeriod(key="total", label="Total"))


@dataclass(frozen=True, slots=True)
class BrokerageTotals:
    invoice_count: int
    total_sales_inr: Decimal
    total_brokerage: Decimal
    received_brokerage: Decimal
    pending_brokerage: Decimal
    brokerage_percentage: Optional[Decimal]


@dataclass(slots=True)
class PartySales:
    party_id: int
    party_name: Optional[str]
    invoice_count: int = 0
    total_sales_inr: Decimal = ZERO
    last_invoice_date: Optional[date] = None
    currencies: set[str] = field(default_factory=set)
    contribution_percentage: Optional[Decimal] = None


def _in_range(value: date, from_date: Optional[date], to_date: Optional[date]) -> bool:
    if from_date is not None and value < from_date:
        return False
    if to_date is not None and value > to_date:
        return False
    return True


def _percentage(part: Decimal, whole: Decimal) -> Optional[Decimal]:
    if whole == 0:
        return None
    return (part / whole * 100).quantize(CENT, rounding=ROUND_HALF_UP)


def aggregate_by_currency(invoices: Iterable[Invoice], party_id: Optional[int] = None) -> list[CurrencySummary]:
    """Group invoices by currency code.

    When ``party_id`` is given only invoices where the party is the seller or
    the buyer are counted.  Groups are ordered by descending total sales, ties
    broken by currency code so the output is fully deterministic.
    """

    groups: dict[str, CurrencySummary] = {}
    for invoice in invoices:
        if party_id is not None and not invoice.involves(party_id):
            continue
        summary = groups.get(invoice.currency)
        if summary is None:
            summary = groups[invoice.currency] = CurrencySummary(currency=invoice.currency)
        summary.invoice_count += 1
        summary.total_sales += invoice.total
        summary.total_brokerage += invoice.brokerage_in_inr
        summary.received_brokerage += invoice.received_brokerage
        if invoice.status == STATUS_PENDING and invoice.balance_brokerage > 0:
            summary.outstanding_invoices_count += 1
    return sorted(groups.values(), key=lambda s: (-s.total_sales, s.currency))


def summaries_by_currency(summaries: Iterable[CurrencySummary]) -> dict[str, dict[str, object]]:
    """Return the ``{currency: {...}}`` mapping form of :func:`aggregate_by_currency`."""

    return {
        summary.currency: {
            "total_sales": summary.total_sales,
            "total_brokerage": summary.total_brokerage,
            "received_brokerage": summary.received_brokerage,
            "outstanding_brokerage": summary.outstanding_brokerage,
            "outstanding_invoices_count": summary.outstanding_invoices_count,
        }
        for summary in summaries
    }


def days_overdue(due_date: date, today: date) -> int:
    return max((today - due_date).days, 0)


def outstanding_invoices(
    invoices: Iterable[Invoice],
    *,
    today: date,
    party_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> list[OutstandingInvoice]:
    """Pending invoices, oldest due first, each with its days overdue."""

    selected = [
        invoice
        for invoice in invoices
        if invoice.status == STATUS_PENDING
        and (party_id is None or invoice.involves(party_id))
        and _in_range(invoice.invoice_date, from_date, to_date)
    ]
    selected.sort(key=lambda inv: (inv.due_date, inv.invoice_number))
    return [OutstandingInvoice(invoice, days_overdue(invoice.due_date, today)) for invoice in selected]


def party_outstanding(invoices: Iterable[Invoice], party_id: int) -> Decimal:
    """Total of pending invoices where ``party_id`` is the seller."""

    total = ZERO
    for invoice in invoices:
        if invoice.party_id == party_id and invoice.status == STATUS_PENDING:
            total += invoice.total
    return total


def _period_for(value: date, group_by: str) -> tuple[str, str]:
    if group_by == "daily":
        return value.strftime("%Y-%m-%d"), value.strftime("%b %d, %Y")
    if group_by == "weekly":
        # Weeks start on Sunday.
        start = value - timedelta(days=(value.weekday() + 1) % 7)
        end = start + timedelta(days=6)
        return start.strftime("%Y-%m-%d"), f"{start:%b %d} - {end:%b %d, %Y}"
    if group_by == "monthly":
        return value.strftime("%Y-%m"), value.strftime("%B %Y")
    quarter = (value.month - 1) // 3 + 1
    return f"{value.year}-Q{quarter}", f"Q{quarter} {value.year}"


def sales_by_period(
    invoices: Iterable[Invoice],
    *,
    group_by: str,
    from_date: date,
    to_date: date,
) -> SalesReport:
    """Sales of non-cancelled invoices dated within ``[from_date, to_date]``."""

    if group_by not in GROUPINGS:
        raise ValidationError(f"Unsupported grouping: {group_by}")

    report = SalesReport(group_by=group_by, from_date=from_date, to_date=to_date)
    periods: dict[str, SalesPeriod] = {}
    for invoice in invoices:
        if invoice.status == STATUS_CANCELLED or not _in_range(invoice.invoice_date, from_date, to_date):
            continue
        key, label = _period_for(invoice.invoice_date, group_by)
        period = periods.get(key)
        if period is None:
            period = periods[key] = SalesPeriod(key=key, label=label)
        period.add(invoice)
        report.totals.add(invoice)
    report.periods = [periods[key] for key in sorted(periods)]
    return report


def brokerage_totals(invoices: Iterable[Invoice]) -> BrokerageTotals:
    """Cross-currency brokerage figures.

    Sales are converted to the base currency with each invoice's own rate so
    the brokerage percentage compares like with like.
    """

    count = 0
    sales = ZERO
    brokerage = ZERO
    received = ZERO
    for invoice in invoices:
        count += 1
        sales += to_base(invoice.total, invoice.exchange_rate)
        brokerage += invoice.brokerage_in_inr
        received += invoice.received_brokerage
    return BrokerageTotals(
        invoice_count=count,
        total_sales_inr=sales,
        total_brokerage=brokerage,
        received_brokerage=received,
        pending_brokerage=brokerage - received,
        brokerage_percentage=_percentage(brokerage, sales),
    )


def top_parties(invoices: Iterable[Invoice], limit: int = 10) -> list[PartySales]:
    """Seller parties ranked by sales in the base currency."""

    by_party: dict[int, PartySales] = {}
    grand_total = ZERO
    for invoice in invoices:
        entry = by_party.get(invoice.party_id)
        if entry is None:
            entry = by_party[invoice.party_id] = PartySales(party_id=invoice.party_id, party_name=invoice.party_name)
        amount = to_base(invoice.subtotal, invoice.exchange_rate)
        entry.invoice_count += 1
        entry.total_sales_inr += amount
        entry.currencies.add(invoice.currency)
        if entry.last_invoice_date is None or invoice.invoice_date > entry.last_invoice_date:
            entry.last_invoice_date = invoice.invoice_date
        grand_total += amount

    ranked = sorted(by_party.values(), key=lambda p: (-p.total_sales_inr, p.party_id))[:limit]
    for entry in ranked:
        entry.contribution_percentage = _percentage(entry.total_sales_inr, grand_total)
    return ranked


def monthly_brokerage_trend(invoices: Iterable[Invoice]) -> list[dict[str, object]]:
    """Brokerage and received brokerage per ``YYYY-MM``, oldest first."""

    months: dict[str, dict[str, Decimal]] = defaultdict(
        lambda: {"brokerage_in_inr": ZERO, "received_brokerage": ZERO, "sales_inr": ZERO}
    )
    for invoice in invoices:
        bucket = months[invoice.invoice_date.strftime("%Y-%m")]
        bucket["brokerage_in_inr"] += invoice.brokerage_in_inr
        bucket["received_brokerage"] += invoice.received_brokerage
        bucket["sales_inr"] += to_base(invoice.total, invoice.exchange_rate)
    return [{"month": month, **months[month]} for month in sorted(months)]
