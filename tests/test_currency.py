"""Currency codes and conversion into the base currency."""
from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from brokerage_ledger.currency import (
    from_base,
    normalise_currency_code,
    resolve_exchange_rate,
    to_base,
)
from brokerage_ledger.errors import ValidationError
from brokerage_ledger.money import format_money, money, to_decimal

amounts = st.decimals(min_value=0, max_value=1_000_000, places=2, allow_nan=False, allow_infinity=False)
fx_rates = st.decimals(min_value=1, max_value=500, places=2, allow_nan=False, allow_infinity=False)


class TestMoney:
    def test_float_input_avoids_binary_drift(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_rounds_half_up(self):
        assert money("2.675") == Decimal("2.68")
        assert money("-2.675") == Decimal("-2.68")

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", object()])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value)

    def test_format_money_has_two_places(self):
        assert format_money(Decimal("5")) == "5.00"


class TestCurrencyCodes:
    def test_code_is_upper_cased(self):
        assert normalise_currency_code(" usd ") == "USD"

    def test_missing_code_uses_default(self):
        assert normalise_currency_code(None) == "INR"
        assert normalise_currency_code("", "eur") == "EUR"

    @pytest.mark.parametrize("code", ["US", "USDT", "U5D"])
    def test_invalid_code_rejected(self, code):
        with pytest.raises(ValidationError, match="Invalid currency code"):
            normalise_currency_code(code)


class TestConversion:
    def test_to_base_rounds_to_cents(self):
        assert to_base(Decimal("10.01"), Decimal("83.33")) == Decimal("834.13")

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1")])
    def test_non_positive_rate_rejected(self, rate):
        with pytest.raises(ValidationError, match="greater than 0"):
            to_base(Decimal("1"), rate)

    @given(amounts, fx_rates)
    def test_round_trip_within_one_cent(self, amount, rate):
        assert abs(from_base(to_base(amount, rate), rate) - amount) <= Decimal("0.01")

    def test_sub_unit_rate_can_lose_small_amounts(self):
        # 0.04 * 0.10 rounds to 0.00 in the base currency
        assert to_base(Decimal("0.04"), Decimal("0.10")) == Decimal("0.00")
        assert from_base(to_base(Decimal("0.04"), Decimal("0.10")), Decimal("0.10")) == Decimal("0.00")


class TestResolveExchangeRate:
    def test_base_currency_always_uses_one(self):
        assert resolve_exchange_rate("INR", Decimal("83.00")) == Decimal("1.00")
        assert resolve_exchange_rate("INR", None) == Decimal("1.00")

    def test_foreign_currency_requires_rate(self):
        with pytest.raises(ValidationError, match="required"):
            resolve_exchange_rate("USD", None)

    def test_rate_stored_with_two_places(self):
        assert resolve_exchange_rate("USD", "83.456") == Decimal("83.46")

    def test_rate_rounding_to_zero_rejected(self):
        with pytest.raises(ValidationError):
            resolve_exchange_rate("JPY", "0.001")

    def test_base_currency_is_configurable(self):
        assert resolve_exchange_rate("USD", None, base_currency="usd") == Decimal("1.00")
