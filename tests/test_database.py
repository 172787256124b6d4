"""SQLite repository behaviour against a throwaway database file."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from brokerage_ledger.errors import NotFoundError, ValidationError
from brokerage_ledger.models import Activity, FxRate, Invoice, InvoiceItem, Party, Transaction


def _party(repository, name):
    return repository.create_party(Party(name=name, contact_person="Contact", phone="9876543210"))


def _invoice(repository, seller, buyer, number="INV-2024-0001"):
    return repository.create_invoice(
        Invoice(
            party_id=seller.id,
            buyer_id=buyer.id,
            invoice_number=number,
            invoice_date=date(2024, 4, 1),
            due_date=date(2024, 4, 16),
            due_days=15,
            subtotal=Decimal("1000.00"),
            tax=Decimal("7.50"),
            total=Decimal("1007.50"),
            brokerage_in_inr=Decimal("7.50"),
            balance_brokerage=Decimal("7.50"),
            items=[InvoiceItem(description="Cotton", quantity=10, rate=Decimal("100.00"))],
        )
    )


class TestParties:
    def test_names_are_unique_ignoring_case(self, repository):
        _party(repository, "Shree Traders")

        assert repository.party_name_exists("shree traders")
        with pytest.raises(ValidationError, match="already exists"):
            _party(repository, "SHREE TRADERS")

    def test_exclude_id_allows_renaming_self(self, repository):
        party = _party(repository, "Shree Traders")
        assert not repository.party_name_exists("Shree Traders", exclude_id=party.id)

    def test_missing_party(self, repository):
        with pytest.raises(NotFoundError) as excinfo:
            repository.get_party(404)
        assert excinfo.value.message == "Party not found"

    def test_outstanding_is_filled_in(self, repository):
        seller, buyer = _party(repository, "Seller"), _party(repository, "Buyer")
        _invoice(repository, seller, buyer)

        parties = {p.name: p for p in repository.list_parties()}

        assert parties["Seller"].outstanding == Decimal("1007.50")
        assert parties["Buyer"].outstanding == Decimal("0.00")

    def test_referenced_party_cannot_be_deleted(self, repository):
        seller, buyer = _party(repository, "Seller"), _party(repository, "Buyer")
        _invoice(repository, seller, buyer)

        with pytest.raises(ValidationError, match="related invoices"):
            repository.delete_party(buyer.id)
        assert repository.get_party(buyer.id).name == "Buyer"

    def test_unreferenced_party_is_deleted(self, repository):
        party = _party(repository, "Lonely")
        repository.delete_party(party.id)
        with pytest.raises(NotFoundError):
            repository.get_party(party.id)


class TestInvoices:
    def test_money_survives_round_trip(self, repository):
        seller, buyer = _party(repository, "Seller"), _party(repository, "Buyer")
        invoice = _invoice(repository, seller, buyer)

        stored = repository.get_invoice(invoice.id)

        assert stored.total == Decimal("1007.50")
        assert stored.exchange_rate == Decimal("1.00")
        assert stored.party_name == "Seller"
        assert stored.buyer_name == "Buyer"
        assert [(item.quantity, item.rate) for item in stored.items] == [(10, Decimal("100.00"))]

    def test_duplicate_number_rejected(self, repository):
        seller, buyer = _party(repository, "Seller"), _party(repository, "Buyer")
        _invoice(repository, seller, buyer)
        with pytest.raises(ValidationError):
            _invoice(repository, seller, buyer)

    def test_delete_cascades_items_and_detaches_transactions(self, repository):
        seller, buyer = _party(repository, "Seller"), _party(repository, "Buyer")
        invoice = _invoice(repository, seller, buyer)
        repository.add_transaction(
            Transaction(amount=Decimal("5.00"), date=datetime(2024, 4, 2), type="payment", party_id=seller.id, invoice_id=invoice.id)
        )

        repository.delete_invoice(invoice.id)

        assert repository.list_invoice_items(invoice.id) == []
        transactions = repository.list_transactions(party_id=seller.id)
        assert len(transactions) == 1
        assert transactions[0].invoice_id is None

    def test_failed_transaction_rolls_back(self, repository):
        seller, buyer = _party(repository, "Seller"), _party(repository, "Buyer")

        with pytest.raises(RuntimeError):
            with repository.transaction():
                _invoice(repository, seller, buyer)
                raise RuntimeError("boom")

        assert repository.list_invoices() == []


class TestActivitiesSettingsAndRates:
    def test_recent_activities_newest_first(self, repository):
        for hour in (9, 11, 10):
            repository.add_activity(
                Activity(type="note", title=f"at {hour}", description="", timestamp=datetime(2024, 4, 1, hour))
            )
        assert [a.title for a in repository.recent_activities(2)] == ["at 11", "at 10"]

    def test_settings_round_trip(self, repository):
        repository.set_setting("recent_window", "5")
        repository.set_setting("recent_window", "7")
        assert repository.all_settings() == {"recent_window": "7"}

    def test_latest_fx_rate(self, repository):
        repository.upsert_fx_rates(
            [
                FxRate(base="USD", quote="INR", valuation_date=date(2024, 4, 1), rate=Decimal("83.10"), source="test"),
                FxRate(base="USD", quote="INR", valuation_date=date(2024, 4, 2), rate=Decimal("83.25"), source="test"),
            ]
        )
        assert repository.get_latest_fx_rate("usd", "inr") == Decimal("83.25")
        assert repository.get_latest_fx_rate("EUR", "INR") is None
