"""Environment-driven configuration and settings overrides."""
from __future__ import annotations

from brokerage_ledger.config import LedgerSettings, load_config


def test_defaults(monkeypatch, tmp_path):
    for name in (
        "BROKERAGE_LEDGER_DEFAULT_CURRENCY",
        "BROKERAGE_LEDGER_DATE_FORMAT",
        "BROKERAGE_LEDGER_AUTO_LOGOUT",
        "BROKERAGE_LEDGER_RECENT_WINDOW",
        "BROKERAGE_LEDGER_LOG_LEVEL",
        "ALPHAVANTAGE_API_KEY",
        "ALPHAVANTAGE_ENDPOINT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BROKERAGE_LEDGER_DB_FILE", str(tmp_path / "data" / "ledger.db"))

    config = load_config()

    assert config.database_file == tmp_path / "data" / "ledger.db"
    assert config.database_file.parent.is_dir()
    assert config.settings == LedgerSettings()
    assert config.log_level == "INFO"
    assert config.alpha_vantage_key is None
    assert config.alpha_vantage_endpoint == "https://www.alphavantage.co/query"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("BROKERAGE_LEDGER_DB_FILE", str(tmp_path / "ledger.db"))
    monkeypatch.setenv("BROKERAGE_LEDGER_DEFAULT_CURRENCY", "usd")
    monkeypatch.setenv("BROKERAGE_LEDGER_RECENT_WINDOW", "25")
    monkeypatch.setenv("BROKERAGE_LEDGER_LOG_LEVEL", "debug")
    monkeypatch.setenv("ALPHAVANTAGE_API_KEY", "demo")

    config = load_config()

    assert config.settings.default_currency == "USD"
    assert config.settings.recent_window == 25
    assert config.log_level == "DEBUG"
    assert config.alpha_vantage_key == "demo"
    assert config.database_uri == f"file:{tmp_path / 'ledger.db'}?mode=rwc"


def test_persisted_overrides_are_coerced():
    settings = LedgerSettings().merged(
        {
            "default_currency": "eur",
            "recent_window": "3",
            "enable_notifications": "no",
            "company_name": "Mehta Brokers",
            "stale_key": "ignored",
        }
    )

    assert settings.default_currency == "EUR"
    assert settings.recent_window == 3
    assert settings.enable_notifications is False
    assert settings.as_dict()["company_name"] == "Mehta Brokers"
