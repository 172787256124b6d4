"""Invoice totals, brokerage, due dates and invoice numbering."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from brokerage_ledger.errors import ValidationError
from brokerage_ledger.models import InvoiceItem
from brokerage_ledger.totals import (
    calculate_brokerage,
    calculate_due_date,
    calculate_subtotal,
    calculate_totals,
    next_invoice_number,
)

rates = st.decimals(min_value=0, max_value=100_000, places=2, allow_nan=False, allow_infinity=False)
quantities = st.integers(min_value=1, max_value=1_000)


class TestSubtotal:
    def test_single_item_with_fixed_brokerage(self):
        totals = calculate_totals(
            [InvoiceItem(description="Cotton", quantity=10, rate=Decimal("100.00"))],
            tax=Decimal("50.00"),
        )

        assert totals.subtotal == Decimal("1000.00")
        assert totals.tax == Decimal("50.00")
        assert totals.total == Decimal("1050.00")
        assert totals.brokerage_in_inr == Decimal("50.00")
        assert totals.balance_brokerage == Decimal("50.00")

    def test_multiple_items_are_summed(self):
        items = [
            InvoiceItem(description="Yarn", quantity=3, rate=Decimal("19.99")),
            InvoiceItem(description="Dye", quantity=2, rate=Decimal("0.50")),
        ]
        assert calculate_subtotal(items) == Decimal("60.97")

    def test_empty_items_rejected(self):
        with pytest.raises(ValidationError, match="at least one item"):
            calculate_subtotal([])

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(ValidationError, match="greater than 0"):
            calculate_subtotal([InvoiceItem(description="x", quantity=quantity, rate=Decimal("1"))])

    def test_fractional_quantity_rejected(self):
        with pytest.raises(ValidationError, match="whole number"):
            calculate_subtotal([InvoiceItem(description="x", quantity=1.5, rate=Decimal("1"))])

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError, match="negative"):
            calculate_subtotal([InvoiceItem(description="x", quantity=1, rate=Decimal("-0.01"))])

    @given(st.lists(st.tuples(quantities, rates), min_size=1, max_size=20))
    def test_subtotal_matches_exact_sum(self, rows):
        items = [InvoiceItem(description="line", quantity=q, rate=r) for q, r in rows]
        expected = sum((r * q for q, r in rows), Decimal("0"))
        assert calculate_subtotal(items) == expected.quantize(Decimal("0.01"))


class TestBrokerage:
    def test_rate_is_a_percentage_of_subtotal(self):
        assert calculate_brokerage(Decimal("1000.00"), Decimal("0.75")) == Decimal("7.50")

    def test_rate_rounds_half_up(self):
        # 333.33 * 1.5% = 4.99995
        assert calculate_brokerage(Decimal("333.33"), Decimal("1.5")) == Decimal("5.00")

    def test_rate_and_fixed_amount_are_exclusive(self):
        with pytest.raises(ValidationError, match="not both"):
            calculate_totals(
                [InvoiceItem(description="x", quantity=1, rate=Decimal("10"))],
                tax=Decimal("1"),
                brokerage_rate=Decimal("1"),
            )

    def test_no_brokerage_source_means_zero(self):
        totals = calculate_totals([InvoiceItem(description="x", quantity=2, rate=Decimal("10"))])
        assert totals.tax == Decimal("0.00")
        assert totals.total == Decimal("20.00")

    def test_foreign_brokerage_is_converted(self):
        totals = calculate_totals(
            [InvoiceItem(description="x", quantity=1, rate=Decimal("100.00"))],
            tax=Decimal("2.00"),
            exchange_rate=Decimal("83.00"),
        )
        assert totals.total == Decimal("102.00")
        assert totals.brokerage_in_inr == Decimal("166.00")

    def test_received_cannot_exceed_brokerage(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            calculate_totals(
                [InvoiceItem(description="x", quantity=1, rate=Decimal("100.00"))],
                tax=Decimal("5.00"),
                received_brokerage=Decimal("5.01"),
            )

    def test_received_is_subtracted_from_balance(self):
        totals = calculate_totals(
            [InvoiceItem(description="x", quantity=1, rate=Decimal("100.00"))],
            tax=Decimal("5.00"),
            received_brokerage=Decimal("2.00"),
        )
        assert totals.received_brokerage == Decimal("2.00")
        assert totals.balance_brokerage == Decimal("3.00")


class TestDueDateAndNumbering:
    def test_due_date_adds_days(self):
        assert calculate_due_date(date(2024, 2, 20), 10) == date(2024, 3, 1)

    def test_negative_due_days_rejected(self):
        with pytest.raises(ValidationError):
            calculate_due_date(date(2024, 1, 1), -1)

    def test_first_number_of_year(self):
        assert next_invoice_number([], 2024) == "INV-2024-0001"

    def test_sequence_continues_from_highest(self):
        existing = ["INV-2023-0007", "INV-2024-0002", "CUSTOM-99", None]
        assert next_invoice_number(existing, 2024) == "INV-2024-0008"
