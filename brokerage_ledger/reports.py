"""Projections of ledger data into the payloads consumed by the front end.

Nothing in this module makes a business decision; it selects fields, sorts
and renders values (Decimals as two-place strings, dates as ISO strings plus
a display string in the configured :attr:`LedgerSettings.date_format`).
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from .aggregation import (
    CurrencySummary,
    OutstandingInvoice,
    SalesPeriod,
    SalesReport,
    aggregate_by_currency,
    brokerage_totals,
    monthly_brokerage_trend,
    outstanding_invoices,
    sales_by_period,
    summaries_by_currency,
    top_parties,
)
from .config import LedgerSettings
from .errors import ValidationError
from .models import STATUS_CANCELLED, STATUS_PAID, STATUS_PENDING, Activity, Invoice, InvoiceItem, Party, Transaction
from .money import format_money

DATE_RANGES = ("today", "yesterday", "week", "month", "year")
CLOSED_STATUSES = ("all", STATUS_PAID, STATUS_CANCELLED)


def _iso(value: Optional[date | datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _display(value: Optional[date | datetime], settings: LedgerSettings) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(settings.date_format)


# ---------------------------------------------------------------------------
# Record projections
# ---------------------------------------------------------------------------

def item_to_dict(item: InvoiceItem) -> dict[str, object]:
    return {
        "id": item.id,
        "invoice_id": item.invoice_id,
        "description": item.description,
        "quantity": item.quantity,
        "rate": format_money(item.rate),
        "amount": format_money(item.amount),
    }


def invoice_to_dict(invoice: Invoice, include_items: bool = False) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "invoice_no": invoice.invoice_no,
        "invoice_date": _iso(invoice.invoice_date),
        "due_days": invoice.due_days,
        "terms": invoice.terms,
        "due_date": _iso(invoice.due_date),
        "currency": invoice.currency,
        "exchange_rate": format_money(invoice.exchange_rate),
        "brokerage_rate": format_money(invoice.brokerage_rate),
        "subtotal": format_money(invoice.subtotal),
        "tax": format_money(invoice.tax),
        "total": format_money(invoice.total),
        "brokerage_in_inr": format_money(invoice.brokerage_in_inr),
        "received_brokerage": format_money(invoice.received_brokerage),
        "balance_brokerage": format_money(invoice.balance_brokerage),
        "status": invoice.status,
        "remarks": invoice.remarks,
        "notes": invoice.notes,
        "payment_date": _iso(invoice.payment_date),
        "party_id": invoice.party_id,
        "party_name": invoice.party_name,
        "buyer_id": invoice.buyer_id,
        "buyer_name": invoice.buyer_name,
        "created_at": _iso(invoice.created_at),
        "updated_at": _iso(invoice.updated_at),
    }
    if include_items:
        payload["items"] = [item_to_dict(item) for item in invoice.items]
    return payload


def party_to_dict(party: Party) -> dict[str, object]:
    return {
        "id": party.id,
        "name": party.name,
        "contact_person": party.contact_person,
        "phone": party.phone,
        "email": party.email,
        "address": party.address,
        "gstin": party.gstin,
        "notes": party.notes,
        "outstanding": format_money(party.outstanding),
        "last_transaction_date": _iso(party.last_transaction_date),
        "created_at": _iso(party.created_at),
        "updated_at": _iso(party.updated_at),
    }


def transaction_to_dict(transaction: Transaction) -> dict[str, object]:
    return {
        "id": transaction.id,
        "amount": format_money(transaction.amount),
        "date": _iso(transaction.date),
        "type": transaction.type,
        "party_id": transaction.party_id,
        "invoice_id": transaction.invoice_id,
        "invoice_number": transaction.invoice_number,
        "notes": transaction.notes,
    }


def activity_to_dict(activity: Activity) -> dict[str, object]:
    return {
        "id": activity.id,
        "type": activity.type,
        "title": activity.title,
        "description": activity.description,
        "timestamp": _iso(activity.timestamp),
        "party_id": activity.party_id,
        "invoice_id": activity.invoice_id,
    }


def currency_summary_to_dict(summary: CurrencySummary) -> dict[str, object]:
    return {
        "currency": summary.currency,
        "invoice_count": summary.invoice_count,
        "total_sales": format_money(summary.total_sales),
        "total_brokerage": format_money(summary.total_brokerage),
        "received_brokerage": format_money(summary.received_brokerage),
        "outstanding_brokerage": format_money(summary.outstanding_brokerage),
        "outstanding_invoices_count": summary.outstanding_invoices_count,
    }


def _period_to_dict(period: SalesPeriod) -> dict[str, object]:
    return {
        "id": period.key,
        "label": period.label,
        "invoice_count": period.invoice_count,
        "gross_sales": format_money(period.gross_sales),
        "tax": format_money(period.tax),
        "net_sales": format_money(period.net_sales),
    }


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def range_start(date_range: str, today: date) -> date:
    """First day covered by a dashboard ``date_range``; unknown means month."""

    if date_range == "today":
        return today
    if date_range == "yesterday":
        return today - timedelta(days=1)
    if date_range == "week":
        return today - timedelta(days=(today.weekday() + 1) % 7)
    if date_range == "year":
        return date(today.year, 1, 1)
    return today.replace(day=1)


def recent_invoices(
    invoices: Iterable[Invoice],
    settings: LedgerSettings,
    limit: Optional[int] = None,
) -> list[dict[str, object]]:
    """Newest invoices first, at most ``limit`` (default ``settings.recent_window``)."""

    window = settings.recent_window if limit is None else limit
    ordered = sorted(
        invoices,
        key=lambda inv: (inv.invoice_date, inv.created_at, inv.id or 0),
        reverse=True,
    )
    return [
        {
            "id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "invoice_date": _iso(invoice.invoice_date),
            "invoice_date_display": _display(invoice.invoice_date, settings),
            "due_date": _iso(invoice.due_date),
            "status": invoice.status,
            "currency": invoice.currency,
            "total": format_money(invoice.total),
            "party_id": invoice.party_id,
            "party_name": invoice.party_name,
        }
        for invoice in ordered[:window]
    ]


def dashboard(
    invoices: Sequence[Invoice],
    *,
    date_range: str,
    today: date,
    settings: LedgerSettings,
) -> dict[str, object]:
    start = range_start(date_range, today)
    in_range = [inv for inv in invoices if start <= inv.invoice_date <= today]
    paid_sales = [inv for inv in in_range if inv.status == STATUS_PAID]
    totals = brokerage_totals(paid_sales)
    return {
        "date_range": date_range if date_range in DATE_RANGES else "month",
        "from_date": _iso(start),
        "to_date": _iso(today),
        "total_sales": format_money(totals.total_sales_inr),
        "total_invoices": len(in_range),
        "pending_invoices": sum(1 for inv in in_range if inv.status == STATUS_PENDING),
        "active_parties": len({inv.party_id for inv in in_range}),
        "currency": settings.default_currency,
        "by_currency": [currency_summary_to_dict(s) for s in aggregate_by_currency(invoices)],
        "recent_invoices": recent_invoices(invoices, settings),
    }


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def _outstanding_row(entry: OutstandingInvoice, settings: LedgerSettings) -> dict[str, object]:
    invoice = entry.invoice
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "invoice_date": _iso(invoice.invoice_date),
        "due_date": _iso(invoice.due_date),
        "due_date_display": _display(invoice.due_date, settings),
        "status": invoice.status,
        "currency": invoice.currency,
        "total": format_money(invoice.total),
        "balance_brokerage": format_money(invoice.balance_brokerage),
        "party_id": invoice.party_id,
        "party_name": invoice.party_name,
        "buyer_name": invoice.buyer_name,
        "days_overdue": entry.days_overdue,
    }


def outstanding_report(
    invoices: Sequence[Invoice],
    *,
    today: date,
    settings: LedgerSettings,
    party_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> dict[str, object]:
    entries = outstanding_invoices(
        invoices, today=today, party_id=party_id, from_date=from_date, to_date=to_date
    )
    summaries = aggregate_by_currency((entry.invoice for entry in entries))
    return {
        "invoices": [_outstanding_row(entry, settings) for entry in entries],
        "by_currency": {
            currency: {key: value if isinstance(value, int) else format_money(value) for key, value in fields.items()}
            for currency, fields in summaries_by_currency(summaries).items()
        },
        "overdue_count": sum(1 for entry in entries if entry.days_overdue > 0),
    }


def closed_report(
    invoices: Sequence[Invoice],
    *,
    settings: LedgerSettings,
    status: str = "all",
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> list[dict[str, object]]:
    """Paid and/or cancelled invoices, most recently closed first."""

    if status not in CLOSED_STATUSES:
        raise ValidationError(f"Invalid status filter: {status}")
    wanted = {STATUS_PAID, STATUS_CANCELLED} if status == "all" else {status}

    def closed_on(invoice: Invoice) -> Optional[date]:
        return invoice.payment_date.date() if invoice.payment_date else None

    rows = []
    for invoice in invoices:
        if invoice.status not in wanted:
            continue
        closed = closed_on(invoice)
        if (from_date or to_date) and closed is None:
            continue
        if closed is not None and ((from_date and closed < from_date) or (to_date and closed > to_date)):
            continue
        rows.append(invoice)
    rows.sort(key=lambda inv: (closed_on(inv) or date.min, inv.invoice_number), reverse=True)
    return [
        {
            "id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "invoice_date": _iso(invoice.invoice_date),
            "closed_date": _iso(invoice.payment_date),
            "closed_date_display": _display(invoice.payment_date, settings),
            "status": invoice.status,
            "currency": invoice.currency,
            "total": format_money(invoice.total),
            "party_id": invoice.party_id,
            "party_name": invoice.party_name,
        }
        for invoice in rows
    ]


def sales_report(
    invoices: Sequence[Invoice],
    *,
    group_by: str,
    from_date: date,
    to_date: date,
) -> dict[str, object]:
    report: SalesReport = sales_by_period(invoices, group_by=group_by, from_date=from_date, to_date=to_date)
    totals = _period_to_dict(report.totals)
    del totals["id"], totals["label"]
    return {
        "group_by": report.group_by,
        "from_date": _iso(report.from_date),
        "to_date": _iso(report.to_date),
        "periods": [_period_to_dict(period) for period in report.periods],
        "totals": totals,
    }


def brokerage_report(
    invoices: Sequence[Invoice],
    *,
    from_date: date,
    to_date: date,
    party_limit: int = 10,
) -> dict[str, object]:
    selected = [inv for inv in invoices if from_date <= inv.invoice_date <= to_date]
    totals = brokerage_totals(selected)
    return {
        "from_date": _iso(from_date),
        "to_date": _iso(to_date),
        "by_currency": [currency_summary_to_dict(s) for s in aggregate_by_currency(selected)],
        "totals": {
            "invoice_count": totals.invoice_count,
            "total_sales_inr": format_money(totals.total_sales_inr),
            "total_brokerage": format_money(totals.total_brokerage),
            "received_brokerage": format_money(totals.received_brokerage),
            "pending_brokerage": format_money(totals.pending_brokerage),
            "brokerage_percentage": (
                format_money(totals.brokerage_percentage) if totals.brokerage_percentage is not None else None
            ),
        },
        "monthly_trend": [
            {
                "month": row["month"],
                "brokerage_in_inr": format_money(row["brokerage_in_inr"]),
                "received_brokerage": format_money(row["received_brokerage"]),
                "sales_inr": format_money(row["sales_inr"]),
            }
            for row in monthly_brokerage_trend(selected)
        ],
        "top_parties": [
            {
                "party_id": entry.party_id,
                "party_name": entry.party_name,
                "invoice_count": entry.invoice_count,
                "total_sales_inr": format_money(entry.total_sales_inr),
                "last_invoice_date": _iso(entry.last_invoice_date),
                "currencies": sorted(entry.currencies),
                "contribution_percentage": (
                    format_money(entry.contribution_percentage)
                    if entry.contribution_percentage is not None
                    else None
                ),
            }
            for entry in top_parties(selected, party_limit)
        ],
    }
