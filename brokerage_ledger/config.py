"""Application configuration utilities for the brokerage_ledger backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.  Calculation
and reporting code never reads this module; it receives a
:class:`LedgerSettings` instance instead.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

# Variables from a local .env file fill in anything not already exported.
load_dotenv()

BASE_CURRENCY = "INR"


@dataclass(frozen=True)
class LedgerSettings:
    """User-facing preferences injected into calculations and projections.

    Attributes:
        default_currency: Base reporting currency. Invoices in this currency
            always use an exchange rate of ``1.00``.
        date_format: ``strftime`` pattern used when rendering dates in
            reports.
        auto_logout_minutes: Idle timeout advertised to the front end.
        enable_notifications: Whether the front end should show toasts.
        company_name: Display name printed on report headers.
        contact_email: Support address printed on report headers.
        recent_window: Number of rows returned by "recent" projections.
    """

    default_currency: str = BASE_CURRENCY
    date_format: str = "%d/%m/%Y"
    auto_logout_minutes: int = 30
    enable_notifications: bool = True
    company_name: str = "BussNote"
    contact_email: str = "support@bussnote.com"
    recent_window: int = 10

    def merged(self, overrides: Mapping[str, str]) -> "LedgerSettings":
        """Return a copy with persisted string overrides applied.

        Unknown keys are ignored so stale rows in the settings table never
        break the application.
        """

        changes: dict[str, object] = {}
        for key, value in overrides.items():
            if key in {"default_currency", "date_format", "company_name", "contact_email"}:
                changes[key] = value.upper() if key == "default_currency" else value
            elif key in {"auto_logout_minutes", "recent_window"}:
                changes[key] = int(value)
            elif key == "enable_notifications":
                changes[key] = value.strip().lower() in {"1", "true", "yes", "on"}
        return replace(self, **changes)

    def as_dict(self) -> dict[str, object]:
        return {
            "default_currency": self.default_currency,
            "date_format": self.date_format,
            "auto_logout_minutes": self.auto_logout_minutes,
            "enable_notifications": self.enable_notifications,
            "company_name": self.company_name,
            "contact_email": self.contact_email,
            "recent_window": self.recent_window,
        }


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        database_file: Absolute path to the SQLite database file that should be
            created and owned by the current process.
        settings: Default :class:`LedgerSettings`; rows in the settings table
            override them at runtime.
        log_level: Name of the root logging level.
        alpha_vantage_key: Optional API key for the Alpha Vantage service. The
            key is required to retrieve FX rates.
        alpha_vantage_endpoint: Endpoint URL used when talking to Alpha
            Vantage. Defaults to the public REST API endpoint.
    """

    project_root: Path
    database_file: Path
    settings: LedgerSettings
    log_level: str
    alpha_vantage_key: Optional[str]
    alpha_vantage_endpoint: str

    @property
    def database_uri(self) -> str:
        """Return a SQLite URI pointing at :attr:`database_file`."""

        return f"file:{self.database_file}?mode=rwc"


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values, allowing users to
    customise the runtime without touching the source code.
    """

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(
        getenv_with_default(
            "BROKERAGE_LEDGER_DB_FILE",
            project_root / "brokerage_ledger.db",
        )
    )

    defaults = LedgerSettings()
    settings = LedgerSettings(
        default_currency=getenv_with_default(
            "BROKERAGE_LEDGER_DEFAULT_CURRENCY", defaults.default_currency
        ).upper(),
        date_format=getenv_with_default("BROKERAGE_LEDGER_DATE_FORMAT", defaults.date_format),
        auto_logout_minutes=int(
            getenv_with_default("BROKERAGE_LEDGER_AUTO_LOGOUT", str(defaults.auto_logout_minutes))
        ),
        recent_window=int(
            getenv_with_default("BROKERAGE_LEDGER_RECENT_WINDOW", str(defaults.recent_window))
        ),
    )

    alpha_vantage_key = getenv_with_default("ALPHAVANTAGE_API_KEY")
    alpha_vantage_endpoint = getenv_with_default(
        "ALPHAVANTAGE_ENDPOINT",
        "https://www.alphavantage.co/query",
    )

    # Ensure the directories exist so later code can safely create files.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        settings=settings,
        log_level=getenv_with_default("BROKERAGE_LEDGER_LOG_LEVEL", "INFO").upper(),
        alpha_vantage_key=alpha_vantage_key,
        alpha_vantage_endpoint=alpha_vantage_endpoint,
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings, keeping the
    return type uniform and easy to serialise.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)
