from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from brokerage_ledger.config import AppConfig, LedgerSettings
from brokerage_ledger.database import SQLiteRepository
from brokerage_ledger.price_service import PriceService
from brokerage_ledger.services import LedgerService


@pytest.fixture()
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        project_root=tmp_path,
        database_file=tmp_path / "ledger.db",
        settings=LedgerSettings(),
        log_level="INFO",
        alpha_vantage_key=None,
        alpha_vantage_endpoint="https://example.invalid/query",
    )


@pytest.fixture()
def repository(config: AppConfig):
    repo = SQLiteRepository(config.database_file)
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.fixture()
def service(config: AppConfig, repository: SQLiteRepository) -> LedgerService:
    return LedgerService(config, repository, PriceService(config))


@pytest.fixture()
def seller(service: LedgerService):
    return service.create_party(
        {"name": "Shree Traders", "contact_person": "Asha Mehta", "phone": "+91 98765 43210"}
    )


@pytest.fixture()
def buyer(service: LedgerService):
    return service.create_party(
        {"name": "Coastal Mills", "contact_person": "Ravi Nair", "phone": "9876501234", "email": "ravi@coastal.test"}
    )


@pytest.fixture()
def invoice_payload(seller, buyer) -> dict[str, object]:
    return {
        "party_id": seller.id,
        "buyer_id": buyer.id,
        "invoice_date": date(2024, 4, 1).isoformat(),
        "due_days": 30,
        "currency": "INR",
        "brokerage_rate": "1",
        "items": [{"description": "Cotton bales", "quantity": 10, "rate": "100.00"}],
    }


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("BROKERAGE_LEDGER_DB_FILE", str(tmp_path / "api.db"))
    monkeypatch.delenv("ALPHAVANTAGE_API_KEY", raising=False)

    from brokerage_ledger.api import app

    with TestClient(app) as test_client:
        yield test_client
