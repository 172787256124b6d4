"""Market data helpers for the brokerage_ledger backend."""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from .config import AppConfig
from .models import FxRate

logger = logging.getLogger(__name__)


class PriceService:
    """Fetch live FX rates used to suggest an invoice's exchange rate."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def fetch_latest_fx_rate(self, base: str, quote: str) -> Optional[FxRate]:
        """Return the latest FX rate between two currencies using Alpha Vantage.

        The function gracefully degrades to ``None`` when the API key is not
        configured or when the external service does not return the expected
        payload structure.  HTTP errors propagate to the caller.
        """

        if not self._config.alpha_vantage_key:
            return None

        params = {
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": base.upper(),
            "to_currency": quote.upper(),
            "apikey": self._config.alpha_vantage_key,
        }
        response = requests.get(self._config.alpha_vantage_endpoint, params=params, timeout=30)
        response.raise_for_status()
        payload = response.json()
        key = "Realtime Currency Exchange Rate"
        if key not in payload:
            logger.warning("Unexpected FX payload for %s/%s: %s", base, quote, sorted(payload))
            return None
        rate_str = payload[key].get("5. Exchange Rate")
        if rate_str is None:
            return None
        try:
            rate = Decimal(rate_str)
        except InvalidOperation:
            return None
        if rate <= 0:
            return None
        return FxRate(
            base=base.upper(),
            quote=quote.upper(),
            valuation_date=date.today(),
            rate=rate,
            source="alpha_vantage",
        )
