"""FastAPI application exposing the brokerage_ledger backend."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import load_config
from .database import SQLiteRepository
from .errors import NotFoundError, ValidationError
from .price_service import PriceService
from .reports import activity_to_dict, invoice_to_dict, party_to_dict, transaction_to_dict
from .schemas import parse_query_date
from .services import LedgerService

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    price_service = PriceService(config)
    ledger_service = LedgerService(config, repository, price_service)

    app.state.config = config
    app.state.repository = repository
    app.state.ledger = ledger_service
    logger.info("brokerage_ledger started with database %s", config.database_file)

    yield

    repository.close()


app = FastAPI(lifespan=lifespan, title="brokerage_ledger backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping ---------------------------------------------------------------


@app.exception_handler(ValidationError)
async def handle_validation_error(_: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"message": exc.message, "errors": exc.errors})


@app.exception_handler(NotFoundError)
async def handle_not_found(_: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"message": exc.message})


# Dependency injection ------------------------------------------------------

def get_ledger_service() -> LedgerService:
    service: LedgerService = app.state.ledger
    return service


Ledger = Annotated[LedgerService, Depends(get_ledger_service)]
Payload = Annotated[dict[str, Any], Body()]


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.get(f"{API_PREFIX}/check-party-name")
def check_party_name(
    ledger: Ledger,
    name: Annotated[str, Query(min_length=1)],
    exclude_id: Optional[int] = None,
) -> dict[str, bool]:
    return {"available": ledger.is_party_name_available(name, exclude_id)}


# Parties -------------------------------------------------------------------


@app.get(f"{API_PREFIX}/parties")
def list_parties(ledger: Ledger) -> list[dict[str, object]]:
    return [party_to_dict(party) for party in ledger.list_parties()]


@app.get(f"{API_PREFIX}/parties/{{party_id}}")
def get_party(party_id: int, ledger: Ledger) -> dict[str, object]:
    return party_to_dict(ledger.get_party(party_id))


@app.post(f"{API_PREFIX}/parties", status_code=201)
def create_party(payload: Payload, ledger: Ledger) -> dict[str, object]:
    return party_to_dict(ledger.create_party(payload))


@app.patch(f"{API_PREFIX}/parties/{{party_id}}")
def update_party(party_id: int, payload: Payload, ledger: Ledger) -> dict[str, object]:
    return party_to_dict(ledger.update_party(party_id, payload))


@app.delete(f"{API_PREFIX}/parties/{{party_id}}", status_code=204)
def delete_party(party_id: int, ledger: Ledger) -> Response:
    ledger.delete_party(party_id)
    return Response(status_code=204)


@app.get(f"{API_PREFIX}/parties/{{party_id}}/invoices")
def party_invoices(party_id: int, ledger: Ledger) -> list[dict[str, object]]:
    return [invoice_to_dict(invoice) for invoice in ledger.party_invoices(party_id)]


@app.get(f"{API_PREFIX}/parties/{{party_id}}/transactions")
def party_transactions(party_id: int, ledger: Ledger) -> list[dict[str, object]]:
    return [transaction_to_dict(tx) for tx in ledger.party_transactions(party_id)]


# Invoices ------------------------------------------------------------------


@app.get(f"{API_PREFIX}/invoices")
def list_invoices(ledger: Ledger) -> list[dict[str, object]]:
    return [invoice_to_dict(invoice) for invoice in ledger.list_invoices()]


@app.get(f"{API_PREFIX}/invoices/recent")
def recent_invoices(
    ledger: Ledger,
    limit: Annotated[Optional[int], Query(ge=1, le=100)] = None,
) -> list[dict[str, object]]:
    return ledger.recent_invoices(limit)


@app.get(f"{API_PREFIX}/invoices/{{invoice_id}}")
def get_invoice(invoice_id: int, ledger: Ledger) -> dict[str, object]:
    return invoice_to_dict(ledger.get_invoice(invoice_id), include_items=True)


@app.post(f"{API_PREFIX}/invoices", status_code=201)
def create_invoice(payload: Payload, ledger: Ledger) -> dict[str, object]:
    return invoice_to_dict(ledger.create_invoice(payload), include_items=True)


@app.put(f"{API_PREFIX}/invoices/{{invoice_id}}")
def update_invoice(invoice_id: int, payload: Payload, ledger: Ledger) -> dict[str, object]:
    return invoice_to_dict(ledger.update_invoice(invoice_id, payload), include_items=True)


@app.patch(f"{API_PREFIX}/invoices/{{invoice_id}}/status")
def update_invoice_status(invoice_id: int, payload: Payload, ledger: Ledger) -> dict[str, object]:
    return invoice_to_dict(ledger.update_invoice_status(invoice_id, payload))


@app.delete(f"{API_PREFIX}/invoices/{{invoice_id}}", status_code=204)
def delete_invoice(invoice_id: int, ledger: Ledger) -> Response:
    ledger.delete_invoice(invoice_id)
    return Response(status_code=204)


# Transactions and activities -------------------------------------------------


@app.post(f"{API_PREFIX}/transactions", status_code=201)
def record_transaction(payload: Payload, ledger: Ledger) -> dict[str, object]:
    return transaction_to_dict(ledger.record_transaction(payload))


@app.get(f"{API_PREFIX}/activities")
def list_activities(
    ledger: Ledger,
    limit: Annotated[int, Query(ge=1, le=100)] = 5,
) -> list[dict[str, object]]:
    return [activity_to_dict(activity) for activity in ledger.recent_activities(limit)]


# Dashboard and reports -------------------------------------------------------


@app.get(f"{API_PREFIX}/dashboard/stats")
def dashboard_stats(ledger: Ledger, date_range: Annotated[str, Query(alias="dateRange")] = "month") -> dict[str, object]:
    return ledger.dashboard(date_range)


@app.get(f"{API_PREFIX}/reports/outstanding")
def outstanding_report(
    ledger: Ledger,
    from_: Annotated[Optional[str], Query(alias="from")] = None,
    to: Optional[str] = None,
    party_id: Optional[int] = None,
) -> dict[str, object]:
    return ledger.outstanding_report(
        from_date=parse_query_date(from_, "from"),
        to_date=parse_query_date(to, "to"),
        party_id=party_id,
    )


@app.get(f"{API_PREFIX}/reports/outstanding/export")
def export_outstanding(
    ledger: Ledger,
    file_format: Annotated[str, Query(alias="format", pattern="^(csv|xlsx)$")] = "csv",
) -> Response:
    content = ledger.export_outstanding(file_format)
    media_type = (
        "text/csv"
        if file_format == "csv"
        else "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="outstanding.{file_format}"'},
    )


@app.get(f"{API_PREFIX}/reports/closed")
def closed_report(
    ledger: Ledger,
    from_: Annotated[Optional[str], Query(alias="from")] = None,
    to: Optional[str] = None,
    status: str = "all",
) -> list[dict[str, object]]:
    return ledger.closed_report(status, parse_query_date(from_, "from"), parse_query_date(to, "to"))


@app.get(f"{API_PREFIX}/reports/sales")
def sales_report(
    ledger: Ledger,
    from_: Annotated[Optional[str], Query(alias="from")] = None,
    to: Optional[str] = None,
    group_by: Annotated[str, Query(alias="groupBy")] = "monthly",
) -> dict[str, object]:
    return ledger.sales_report(group_by, parse_query_date(from_, "from"), parse_query_date(to, "to"))


@app.get(f"{API_PREFIX}/reports/brokerage")
def brokerage_report(
    ledger: Ledger,
    from_date: Annotated[Optional[str], Query(alias="fromDate")] = None,
    to_date: Annotated[Optional[str], Query(alias="toDate")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> dict[str, object]:
    return ledger.brokerage_report(
        parse_query_date(from_date, "fromDate"),
        parse_query_date(to_date, "toDate"),
        party_limit=limit,
    )


# Settings and market data ----------------------------------------------------


@app.get(f"{API_PREFIX}/settings")
def get_settings(ledger: Ledger) -> dict[str, object]:
    return ledger.settings().as_dict()


@app.put(f"{API_PREFIX}/settings")
def update_settings(payload: Payload, ledger: Ledger) -> dict[str, object]:
    return ledger.update_settings(payload).as_dict()


@app.get(f"{API_PREFIX}/fx/{{currency}}")
def suggested_exchange_rate(
    currency: Annotated[str, Path(pattern="^[A-Za-z]{3}$")],
    ledger: Ledger,
) -> dict[str, object]:
    rate = ledger.suggested_exchange_rate(currency)
    return {"currency": currency.upper(), "exchange_rate": str(rate) if rate is not None else None}


@app.post(f"{API_PREFIX}/fx/refresh")
def refresh_fx_rate(
    currency: Annotated[str, Query(pattern="^[A-Za-z]{3}$")],
    ledger: Ledger,
) -> dict[str, object]:
    rate = ledger.refresh_fx_rate(currency)
    if not rate:
        raise HTTPException(status_code=503, detail="FX rate unavailable. Ensure the Alpha Vantage API key is configured.")
    return {
        "base": rate.base,
        "quote": rate.quote,
        "valuation_date": rate.valuation_date.isoformat(),
        "rate": str(rate.rate),
        "source": rate.source,
    }
