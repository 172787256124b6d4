"""High-level application services orchestrating the brokerage_ledger backend.

:class:`LedgerService` is the only place that combines the pure calculation
modules with the repository.  Payloads arrive as plain mappings, are parsed
by :mod:`brokerage_ledger.schemas`, pass through the calculators and are
persisted atomically.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Mapping, Optional

from . import reports
from .brokerage import apply_payment, apply_refund, reconcile_status
from .config import AppConfig, LedgerSettings
from .currency import normalise_currency_code, resolve_exchange_rate
from .database import SQLiteRepository
from .errors import ValidationError
from .exporters import outstanding_frame, to_csv_bytes, to_excel_bytes
from .models import (
    STATUS_CANCELLED,
    STATUS_PAID,
    STATUS_PENDING,
    TX_PAYMENT,
    TX_REFUND,
    Activity,
    FxRate,
    Invoice,
    InvoiceItem,
    Party,
    Transaction,
    utcnow,
)
from .money import ZERO, format_money
from .price_service import PriceService
from .schemas import (
    InvoiceInput,
    InvoiceItemInput,
    InvoiceUpdate,
    PartyInput,
    PartyUpdate,
    SettingsUpdate,
    StatusUpdate,
    TransactionInput,
    parse,
)
from .totals import InvoiceTotals, calculate_due_date, calculate_totals, next_invoice_number

logger = logging.getLogger(__name__)


def _items_from_input(items: list[InvoiceItemInput]) -> list[InvoiceItem]:
    return [InvoiceItem(description=item.description, quantity=item.quantity, rate=item.rate) for item in items]


class LedgerService:
    """Coordinates validation, calculation and persistence."""

    def __init__(self, config: AppConfig, repository: SQLiteRepository, price_service: PriceService) -> None:
        self._config = config
        self._repository = repository
        self._price_service = price_service

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def settings(self) -> LedgerSettings:
        return self._config.settings.merged(self._repository.all_settings())

    def update_settings(self, payload: Mapping[str, object]) -> LedgerSettings:
        update = parse(SettingsUpdate, payload)
        for key, value in update.model_dump(exclude_none=True).items():
            if key == "default_currency":
                value = str(value).upper()
            self._repository.set_setting(key, str(value))
        logger.info("Settings updated: %s", sorted(update.model_dump(exclude_none=True)))
        return self.settings()

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------
    def is_party_name_available(self, name: str, exclude_id: Optional[int] = None) -> bool:
        return not self._repository.party_name_exists(name, exclude_id)

    def list_parties(self) -> list[Party]:
        return self._repository.list_parties()

    def get_party(self, party_id: int) -> Party:
        return self._repository.get_party(party_id)

    def create_party(self, payload: Mapping[str, object]) -> Party:
        data = parse(PartyInput, payload)
        if self._repository.party_name_exists(data.name):
            raise ValidationError(f"A party named {data.name!r} already exists")
        with self._repository.transaction():
            party = self._repository.create_party(Party(**data.model_dump()))
            self._repository.add_activity(
                Activity(
                    type="party_added",
                    title="New party added",
                    description=f"{party.name} was added",
                    party_id=party.id,
                )
            )
        logger.info("Created party %s (%s)", party.id, party.name)
        return party

    def update_party(self, party_id: int, payload: Mapping[str, object]) -> Party:
        data = parse(PartyUpdate, payload)
        changes = data.model_dump(exclude_unset=True)
        for required in ("name", "contact_person", "phone"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be empty")
        with self._repository.transaction():
            existing = self._repository.get_party(party_id)
            if "name" in changes and self._repository.party_name_exists(changes["name"], exclude_id=party_id):
                raise ValidationError(f"A party named {changes['name']!r} already exists")
            party = self._repository.update_party(replace(existing, updated_at=utcnow(), **changes))
            self._repository.add_activity(
                Activity(
                    type="party_updated",
                    title="Party updated",
                    description=f"{party.name} details were updated",
                    party_id=party.id,
                )
            )
        logger.info("Updated party %s fields=%s", party_id, sorted(changes))
        return party

    def delete_party(self, party_id: int) -> None:
        try:
            self._repository.delete_party(party_id)
        except ValidationError:
            logger.warning("Refused to delete referenced party %s", party_id)
            raise
        logger.info("Deleted party %s", party_id)

    def party_transactions(self, party_id: int) -> list[Transaction]:
        self._repository.get_party(party_id)
        return self._repository.list_transactions(party_id=party_id)

    def party_invoices(self, party_id: int) -> list[Invoice]:
        self._repository.get_party(party_id)
        return self._repository.list_invoices(party_id=party_id)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------
    def list_invoices(self) -> list[Invoice]:
        return self._repository.list_invoices()

    def get_invoice(self, invoice_id: int) -> Invoice:
        return self._repository.get_invoice(invoice_id)

    def recent_invoices(self, limit: Optional[int] = None) -> list[dict[str, object]]:
        return reports.recent_invoices(self._repository.list_invoices(), self.settings(), limit)

    def create_invoice(self, payload: Mapping[str, object]) -> Invoice:
        """Validate, price and persist a new invoice with its items."""

        data = parse(InvoiceInput, payload)
        settings = self.settings()
        currency = normalise_currency_code(data.currency, settings.default_currency)
        exchange_rate = resolve_exchange_rate(currency, data.exchange_rate, settings.default_currency)
        items = _items_from_input(data.items)
        totals = calculate_totals(
            items,
            tax=data.tax,
            brokerage_rate=data.brokerage_rate,
            exchange_rate=exchange_rate,
            received_brokerage=data.received_brokerage,
        )

        with self._repository.transaction():
            seller = self._repository.get_party(data.party_id)
            buyer = self._repository.get_party(data.buyer_id)
            invoice_number = data.invoice_number or next_invoice_number(
                self._repository.invoice_numbers(), data.invoice_date.year
            )
            invoice = Invoice(
                party_id=seller.id,
                buyer_id=buyer.id,
                invoice_number=invoice_number,
                invoice_no=data.invoice_no,
                invoice_date=data.invoice_date,
                due_days=data.due_days,
                terms=data.terms,
                due_date=calculate_due_date(data.invoice_date, data.due_days),
                currency=currency,
                exchange_rate=exchange_rate,
                brokerage_rate=data.brokerage_rate if data.brokerage_rate is not None else ZERO,
                remarks=data.remarks,
                notes=data.notes,
                items=items,
            )
            invoice = self._repository.create_invoice(reconcile_status(_with_totals(invoice, totals)))
            self._repository.add_activity(
                Activity(
                    type="invoice_created",
                    title="New invoice created",
                    description=f"Invoice #{invoice.invoice_number} for {seller.name}",
                    party_id=invoice.party_id,
                    invoice_id=invoice.id,
                )
            )
        logger.info(
            "Created invoice %s total=%s %s brokerage_in_inr=%s",
            invoice.invoice_number,
            format_money(invoice.total),
            invoice.currency,
            format_money(invoice.brokerage_in_inr),
        )
        return invoice

    def update_invoice(self, invoice_id: int, payload: Mapping[str, object]) -> Invoice:
        """Apply a partial edit and recompute every derived money field."""

        data = parse(InvoiceUpdate, payload)
        changes = data.model_dump(exclude_unset=True)
        settings = self.settings()
        with self._repository.transaction():
            existing = self._repository.get_invoice(invoice_id)
            currency = normalise_currency_code(
                data.currency if "currency" in changes else existing.currency, settings.default_currency
            )
            if data.exchange_rate is not None:
                submitted_rate = data.exchange_rate
            elif currency == existing.currency:
                submitted_rate = existing.exchange_rate
            else:
                submitted_rate = None
            exchange_rate = resolve_exchange_rate(currency, submitted_rate, settings.default_currency)
            items = _items_from_input(data.items) if data.items is not None else existing.items

            if data.tax is not None:
                tax, brokerage_rate = data.tax, None
            elif data.brokerage_rate is not None:
                tax, brokerage_rate = None, data.brokerage_rate
            elif existing.brokerage_rate > 0:
                tax, brokerage_rate = None, existing.brokerage_rate
            else:
                tax, brokerage_rate = existing.tax, None

            totals = calculate_totals(
                items,
                tax=tax,
                brokerage_rate=brokerage_rate,
                exchange_rate=exchange_rate,
                received_brokerage=existing.received_brokerage,
            )
            invoice_date = data.invoice_date or existing.invoice_date
            due_days = data.due_days if data.due_days is not None else existing.due_days
            updated = replace(
                existing,
                invoice_no=changes.get("invoice_no", existing.invoice_no),
                invoice_date=invoice_date,
                due_days=due_days,
                due_date=calculate_due_date(invoice_date, due_days),
                terms=data.terms or existing.terms,
                currency=currency,
                exchange_rate=exchange_rate,
                brokerage_rate=brokerage_rate if brokerage_rate is not None else ZERO,
                remarks=changes.get("remarks", existing.remarks),
                notes=changes.get("notes", existing.notes),
                items=items,
                updated_at=utcnow(),
            )
            reconciled = reconcile_status(_with_totals(updated, totals), when=updated.updated_at)
            invoice = self._repository.update_invoice(reconciled, replace_items=data.items is not None)
            if invoice.status != existing.status:
                logger.info(
                    "Invoice %s status %s -> %s after edit", invoice.invoice_number, existing.status, invoice.status
                )
            self._repository.add_activity(
                Activity(
                    type="invoice_updated",
                    title="Invoice updated",
                    description=f"Invoice #{invoice.invoice_number} was updated",
                    party_id=invoice.party_id,
                    invoice_id=invoice.id,
                )
            )
        logger.info("Updated invoice %s fields=%s", invoice.invoice_number, sorted(changes))
        return invoice

    def update_invoice_status(self, invoice_id: int, payload: Mapping[str, object]) -> Invoice:
        """Move an invoice between pending, paid and cancelled.

        Marking an invoice paid settles any remaining brokerage balance with a
        payment transaction, so the ledger invariants keep holding.
        """

        status = parse(StatusUpdate, payload).status
        with self._repository.transaction():
            invoice = self._repository.get_invoice(invoice_id)
            if invoice.status == status:
                return invoice
            now = utcnow()
            if status == STATUS_PAID:
                if invoice.status == STATUS_CANCELLED:
                    raise ValidationError("A cancelled invoice cannot be marked paid")
                if invoice.balance_brokerage > 0:
                    balance = invoice.balance_brokerage
                    outcome = apply_payment(invoice, balance, when=now)
                    self._repository.add_transaction(
                        Transaction(
                            amount=balance,
                            date=now,
                            type=TX_PAYMENT,
                            party_id=invoice.party_id,
                            invoice_id=invoice.id,
                            notes="Payment received",
                        )
                    )
                    self._repository.add_activity(outcome.activity)
                    updated = outcome.invoice
                else:
                    updated = replace(invoice, status=STATUS_PAID, payment_date=now, updated_at=now)
            elif status == STATUS_CANCELLED:
                updated = replace(invoice, status=STATUS_CANCELLED, payment_date=invoice.payment_date or now, updated_at=now)
            else:
                updated = replace(invoice, status=STATUS_PENDING, payment_date=None, updated_at=now)

            result = self._repository.update_invoice(updated)
            self._repository.add_activity(
                Activity(
                    type="invoice_status_changed",
                    title="Invoice status changed",
                    description=f"Invoice #{invoice.invoice_number} changed from {invoice.status} to {status}",
                    timestamp=now,
                    party_id=invoice.party_id,
                    invoice_id=invoice.id,
                )
            )
        logger.info("Invoice %s status %s -> %s", invoice.invoice_number, invoice.status, status)
        return result

    def delete_invoice(self, invoice_id: int) -> None:
        with self._repository.transaction():
            invoice = self._repository.get_invoice(invoice_id)
            self._repository.delete_invoice(invoice_id)
            self._repository.add_activity(
                Activity(
                    type="invoice_deleted",
                    title="Invoice deleted",
                    description=f"Invoice #{invoice.invoice_number} was deleted",
                    party_id=invoice.party_id,
                )
            )
        logger.info("Deleted invoice %s", invoice.invoice_number)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def record_transaction(self, payload: Mapping[str, object]) -> Transaction:
        """Append a transaction; payments and refunds update the invoice ledger.

        The read of the invoice balance and the write of the new balance run
        in the same write-locked transaction.
        """

        data = parse(TransactionInput, payload)
        with self._repository.transaction():
            party = self._repository.get_party(data.party_id)
            transaction = Transaction(
                amount=data.amount,
                date=data.date,
                type=data.type,
                party_id=party.id,
                invoice_id=data.invoice_id,
                notes=data.notes,
            )
            if data.invoice_id is not None:
                invoice = self._repository.get_invoice(data.invoice_id)
                if not invoice.involves(party.id):
                    raise ValidationError("Invoice does not belong to this party")
                if data.type == TX_PAYMENT:
                    outcome = apply_payment(invoice, data.amount, when=data.date)
                elif data.type == TX_REFUND:
                    outcome = apply_refund(invoice, data.amount, when=data.date)
                else:
                    outcome = None
                if outcome is not None:
                    self._repository.update_invoice(outcome.invoice)
                    activity = outcome.activity
                else:
                    activity = _transaction_activity(transaction)
            else:
                activity = _transaction_activity(transaction)
            saved = self._repository.add_transaction(transaction)
            self._repository.add_activity(activity)
        logger.info(
            "Recorded %s of %s for party %s invoice=%s",
            saved.type,
            format_money(saved.amount),
            saved.party_id,
            saved.invoice_id,
        )
        return saved

    def recent_activities(self, limit: int = 5) -> list[Activity]:
        return self._repository.recent_activities(limit)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def dashboard(self, date_range: str = "month", today: Optional[date] = None) -> dict[str, object]:
        return reports.dashboard(
            self._repository.list_invoices(),
            date_range=date_range,
            today=today or date.today(),
            settings=self.settings(),
        )

    def outstanding_report(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        party_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        return reports.outstanding_report(
            self._repository.list_invoices(),
            today=today or date.today(),
            settings=self.settings(),
            party_id=party_id,
            from_date=from_date,
            to_date=to_date,
        )

    def closed_report(
        self,
        status: str = "all",
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[dict[str, object]]:
        return reports.closed_report(
            self._repository.list_invoices(),
            settings=self.settings(),
            status=status,
            from_date=from_date,
            to_date=to_date,
        )

    def sales_report(
        self,
        group_by: str = "monthly",
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        """Sales per period; defaults to the current calendar month."""

        today = today or date.today()
        start = from_date or today.replace(day=1)
        end = to_date or _month_end(today)
        return reports.sales_report(self._repository.list_invoices(), group_by=group_by, from_date=start, to_date=end)

    def brokerage_report(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        party_limit: int = 10,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        """Brokerage analytics; defaults to the trailing twelve months."""

        today = today or date.today()
        start = from_date or _one_year_before(today)
        end = to_date or today
        return reports.brokerage_report(
            self._repository.list_invoices(), from_date=start, to_date=end, party_limit=party_limit
        )

    def export_outstanding(self, file_format: str = "csv", today: Optional[date] = None) -> bytes:
        rows = self.outstanding_report(today=today)["invoices"]
        frame = outstanding_frame(rows)
        if file_format == "csv":
            return to_csv_bytes(frame)
        if file_format == "xlsx":
            return to_excel_bytes(frame, sheet_name="Outstanding")
        raise ValidationError(f"Unsupported export format: {file_format}")

    # ------------------------------------------------------------------
    # Market data utilities
    # ------------------------------------------------------------------
    def refresh_fx_rate(self, currency: str) -> Optional[FxRate]:
        """Fetch and store the rate converting ``currency`` into the base currency."""

        base = self.settings().default_currency
        rate = self._price_service.fetch_latest_fx_rate(normalise_currency_code(currency), base)
        if rate:
            self._repository.upsert_fx_rates([rate])
            logger.info("Stored FX rate %s/%s=%s", rate.base, rate.quote, rate.rate)
        return rate

    def suggested_exchange_rate(self, currency: str) -> Optional[Decimal]:
        settings = self.settings()
        code = normalise_currency_code(currency, settings.default_currency)
        if code == settings.default_currency:
            return Decimal("1.00")
        return self._repository.get_latest_fx_rate(code, settings.default_currency)


def _with_totals(invoice: Invoice, totals: InvoiceTotals) -> Invoice:
    return replace(
        invoice,
        subtotal=totals.subtotal,
        tax=totals.tax,
        total=totals.total,
        brokerage_in_inr=totals.brokerage_in_inr,
        received_brokerage=totals.received_brokerage,
        balance_brokerage=totals.balance_brokerage,
    )


def _transaction_activity(transaction: Transaction) -> Activity:
    return Activity(
        type="payment_received" if transaction.type == TX_PAYMENT else f"{transaction.type}_recorded",
        title=f"{transaction.type.capitalize()} recorded",
        description=f"INR {format_money(transaction.amount)} {transaction.type} recorded",
        timestamp=transaction.date,
        party_id=transaction.party_id,
        invoice_id=transaction.invoice_id,
    )


def _month_end(value: date) -> date:
    first_of_next = (value.replace(day=28) + timedelta(days=4)).replace(day=1)
    return first_of_next - timedelta(days=1)


def _one_year_before(value: date) -> date:
    try:
        return value.replace(year=value.year - 1)
    except ValueError:
        # 29 February
        return value.replace(year=value.year - 1, day=28)
