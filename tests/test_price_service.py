"""Alpha Vantage FX lookups with the HTTP layer stubbed out."""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest
import requests

from brokerage_ledger import price_service
from brokerage_ledger.price_service import PriceService


class _FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


@pytest.fixture
def keyed_config(config):
    return replace(config, alpha_vantage_key="demo")


def _stub_get(monkeypatch, response):
    calls = []

    def fake_get(url, params, timeout):
        calls.append((url, params))
        return response

    monkeypatch.setattr(price_service.requests, "get", fake_get)
    return calls


def test_without_key_no_request_is_made(monkeypatch, config):
    calls = _stub_get(monkeypatch, _FakeResponse({}))
    assert PriceService(config).fetch_latest_fx_rate("USD", "INR") is None
    assert calls == []


def test_parses_exchange_rate(monkeypatch, keyed_config):
    calls = _stub_get(
        monkeypatch,
        _FakeResponse({"Realtime Currency Exchange Rate": {"5. Exchange Rate": "83.12500000"}}),
    )

    rate = PriceService(keyed_config).fetch_latest_fx_rate("usd", "inr")

    assert rate.base == "USD"
    assert rate.quote == "INR"
    assert rate.rate == Decimal("83.125")
    assert calls[0][1]["from_currency"] == "USD"
    assert calls[0][1]["apikey"] == "demo"


@pytest.mark.parametrize(
    "payload",
    [
        {"Note": "Thank you for using Alpha Vantage"},
        {"Realtime Currency Exchange Rate": {}},
        {"Realtime Currency Exchange Rate": {"5. Exchange Rate": "n/a"}},
        {"Realtime Currency Exchange Rate": {"5. Exchange Rate": "0"}},
    ],
)
def test_unusable_payload(monkeypatch, keyed_config, payload):
    _stub_get(monkeypatch, _FakeResponse(payload))
    assert PriceService(keyed_config).fetch_latest_fx_rate("USD", "INR") is None


def test_http_errors_propagate(monkeypatch, keyed_config):
    _stub_get(monkeypatch, _FakeResponse({}, status_code=500))
    with pytest.raises(requests.HTTPError):
        PriceService(keyed_config).fetch_latest_fx_rate("USD", "INR")


def test_refresh_stores_rate(monkeypatch, keyed_config, repository):
    from brokerage_ledger.services import LedgerService

    _stub_get(
        monkeypatch,
        _FakeResponse({"Realtime Currency Exchange Rate": {"5. Exchange Rate": "83.40"}}),
    )
    service = LedgerService(keyed_config, repository, PriceService(keyed_config))

    service.refresh_fx_rate("usd")

    assert service.suggested_exchange_rate("USD") == Decimal("83.40")
