"""Received and balance brokerage bookkeeping."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from brokerage_ledger.brokerage import apply_payment, apply_refund, ledger_for, reconcile_status
from brokerage_ledger.errors import ValidationError
from brokerage_ledger.models import Transaction

from tests.factories import make_invoice

payments = st.decimals(min_value="0.01", max_value=500, places=2, allow_nan=False, allow_infinity=False)


def _payment(amount: str, day: int, invoice_id: int = 1, type_: str = "payment") -> Transaction:
    return Transaction(
        id=day,
        amount=Decimal(amount),
        date=datetime(2024, 3, day, 10, 0),
        type=type_,
        party_id=1,
        invoice_id=invoice_id,
    )


class TestApplyPayment:
    def test_partial_payments_then_overpayment(self):
        invoice = make_invoice(brokerage_in_inr="200.00")

        invoice = apply_payment(invoice, Decimal("80.00")).invoice
        invoice = apply_payment(invoice, Decimal("80.00")).invoice

        assert invoice.received_brokerage == Decimal("160.00")
        assert invoice.balance_brokerage == Decimal("40.00")
        assert invoice.status == "pending"
        with pytest.raises(ValidationError, match="exceeds balance"):
            apply_payment(invoice, Decimal("50.00"))

    def test_input_invoice_is_not_mutated(self):
        invoice = make_invoice(brokerage_in_inr="200.00")
        apply_payment(invoice, Decimal("80.00"))
        assert invoice.received_brokerage == Decimal("0.00")

    def test_settling_balance_marks_paid(self):
        when = datetime(2024, 3, 5, 12, 0)
        outcome = apply_payment(make_invoice(brokerage_in_inr="40.00"), "40", when=when)

        assert outcome.invoice.balance_brokerage == Decimal("0.00")
        assert outcome.invoice.status == "paid"
        assert outcome.invoice.payment_date == when
        assert outcome.activity.type == "payment_received"
        assert outcome.activity.invoice_id == 1

    @pytest.mark.parametrize("amount", ["0", "-5.00", "0.004"])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValidationError, match="greater than 0"):
            apply_payment(make_invoice(brokerage_in_inr="10.00"), amount)

    def test_cancelled_invoice_rejects_payment(self):
        with pytest.raises(ValidationError, match="cancelled"):
            apply_payment(make_invoice(brokerage_in_inr="10.00", status="cancelled"), "1.00")

    @given(st.lists(payments, max_size=25))
    def test_received_never_exceeds_brokerage(self, amounts):
        invoice = make_invoice(brokerage_in_inr="1000.00")
        for amount in amounts:
            try:
                invoice = apply_payment(invoice, amount).invoice
            except ValidationError:
                pass
            assert Decimal("0") <= invoice.received_brokerage <= invoice.brokerage_in_inr
            assert invoice.balance_brokerage == invoice.brokerage_in_inr - invoice.received_brokerage


class TestApplyRefund:
    def test_refund_reopens_paid_invoice(self):
        invoice = make_invoice(brokerage_in_inr="100.00", received="100.00", status="paid", payment_date=datetime(2024, 3, 1))
        outcome = apply_refund(invoice, "25.00")

        assert outcome.invoice.received_brokerage == Decimal("75.00")
        assert outcome.invoice.balance_brokerage == Decimal("25.00")
        assert outcome.invoice.status == "pending"
        assert outcome.invoice.payment_date is None
        assert outcome.activity.type == "refund_issued"

    def test_refund_larger_than_received_rejected(self):
        with pytest.raises(ValidationError, match="exceeds received"):
            apply_refund(make_invoice(brokerage_in_inr="100.00", received="10.00"), "10.01")


class TestReconcileStatus:
    def test_paid_invoice_owing_again_is_reopened(self):
        invoice = make_invoice(brokerage_in_inr="50.00", received="10.00", status="paid", payment_date=datetime(2024, 3, 1))

        reopened = reconcile_status(invoice)

        assert reopened.status == "pending"
        assert reopened.payment_date is None

    def test_fully_received_pending_invoice_is_settled(self):
        when = datetime(2024, 3, 2, 9, 30)
        settled = reconcile_status(make_invoice(brokerage_in_inr="10.00", received="10.00"), when=when)

        assert settled.status == "paid"
        assert settled.payment_date == when

    @pytest.mark.parametrize(
        "overrides",
        [
            {"brokerage_in_inr": "0.00"},
            {"brokerage_in_inr": "10.00", "received": "4.00"},
            {"brokerage_in_inr": "10.00", "received": "10.00", "status": "paid"},
            {"brokerage_in_inr": "10.00", "status": "cancelled"},
        ],
    )
    def test_consistent_status_is_left_alone(self, overrides):
        invoice = make_invoice(**overrides)
        assert reconcile_status(invoice) is invoice


class TestLedgerReplay:
    def test_replays_history_in_date_order(self):
        invoice = make_invoice(brokerage_in_inr="200.00", received="120.00")
        history = [
            _payment("20.00", 9, type_="refund"),
            _payment("80.00", 2),
            _payment("60.00", 5),
            _payment("999.00", 3, invoice_id=2),
            _payment("15.00", 4, type_="adjustment"),
        ]

        entry = ledger_for(invoice, history)

        assert entry.received_brokerage == Decimal("120.00")
        assert entry.balance_brokerage == Decimal("80.00")

    def test_inconsistent_history_raises(self):
        invoice = make_invoice(brokerage_in_inr="50.00")
        with pytest.raises(ValidationError):
            ledger_for(invoice, [_payment("30.00", 1), _payment("30.00", 2)])
