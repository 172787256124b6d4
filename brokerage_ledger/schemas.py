"""Typed input structs for every write operation.

Raw payloads (JSON bodies, form submissions) are parsed here and rejected
with :class:`~brokerage_ledger.errors.ValidationError` before any
calculation or storage code sees them.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal, Mapping, Optional, Type, TypeVar

import pydantic
from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ValidationError
from .models import TERMS_OPTIONS, utcnow

DEFAULT_BROKERAGE_RATE = Decimal("0.75")
PHONE_PATTERN = r"^\+?[0-9\s-]{10,15}$"

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Input(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class PartyInput(_Input):
    name: str = Field(min_length=2)
    contact_person: str = Field(min_length=2)
    phone: str = Field(pattern=PHONE_PATTERN)
    email: Optional[str] = None
    address: Optional[str] = None
    gstin: Optional[str] = None
    notes: Optional[str] = None


class PartyUpdate(_Input):
    name: Optional[str] = Field(default=None, min_length=2)
    contact_person: Optional[str] = Field(default=None, min_length=2)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    email: Optional[str] = None
    address: Optional[str] = None
    gstin: Optional[str] = None
    notes: Optional[str] = None


class InvoiceItemInput(_Input):
    description: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    rate: Decimal = Field(ge=0)


class InvoiceInput(_Input):
    party_id: int
    buyer_id: int
    invoice_date: date
    items: list[InvoiceItemInput] = Field(min_length=1)
    invoice_number: Optional[str] = None
    invoice_no: Optional[str] = None
    due_days: int = Field(default=15, ge=0)
    terms: str = "Days"
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    brokerage_rate: Optional[Decimal] = Field(default=None, ge=0)
    tax: Optional[Decimal] = Field(default=None, ge=0)
    received_brokerage: Decimal = Field(default=Decimal("0"), ge=0)
    remarks: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("terms")
    @classmethod
    def _known_terms(cls, value: str) -> str:
        if value not in TERMS_OPTIONS:
            raise ValueError(f"terms must be one of {', '.join(TERMS_OPTIONS)}")
        return value

    @model_validator(mode="after")
    def _check_parties_and_brokerage(self) -> "InvoiceInput":
        if self.party_id == self.buyer_id:
            raise ValueError("Seller and buyer must be different parties")
        if self.tax is not None and self.brokerage_rate is not None:
            raise ValueError("Supply either tax or brokerage_rate, not both")
        if self.tax is None and self.brokerage_rate is None:
            self.brokerage_rate = DEFAULT_BROKERAGE_RATE
        return self


class InvoiceUpdate(_Input):
    """Partial edit of an invoice; any money-relevant field triggers a recompute."""

    invoice_date: Optional[date] = None
    items: Optional[list[InvoiceItemInput]] = Field(default=None, min_length=1)
    invoice_no: Optional[str] = None
    due_days: Optional[int] = Field(default=None, ge=0)
    terms: Optional[str] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    brokerage_rate: Optional[Decimal] = Field(default=None, ge=0)
    tax: Optional[Decimal] = Field(default=None, ge=0)
    remarks: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("terms")
    @classmethod
    def _known_terms(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in TERMS_OPTIONS:
            raise ValueError(f"terms must be one of {', '.join(TERMS_OPTIONS)}")
        return value

    @model_validator(mode="after")
    def _single_brokerage_source(self) -> "InvoiceUpdate":
        if self.tax is not None and self.brokerage_rate is not None:
            raise ValueError("Supply either tax or brokerage_rate, not both")
        return self


class StatusUpdate(_Input):
    status: Literal["pending", "paid", "cancelled"]


class TransactionInput(_Input):
    amount: Decimal = Field(gt=0)
    type: Literal["payment", "refund", "adjustment"]
    party_id: int
    invoice_id: Optional[int] = None
    date: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class SettingsUpdate(_Input):
    default_currency: Optional[str] = Field(default=None, pattern=r"^[A-Za-z]{3}$")
    date_format: Optional[str] = None
    auto_logout_minutes: Optional[int] = Field(default=None, ge=0)
    enable_notifications: Optional[bool] = None
    company_name: Optional[str] = None
    contact_email: Optional[str] = None
    recent_window: Optional[int] = Field(default=None, ge=1, le=100)


def parse(model: Type[ModelT], payload: Mapping[str, object] | None) -> ModelT:
    """Validate ``payload`` against ``model`` or raise :class:`ValidationError`."""

    try:
        return model.model_validate(payload or {})
    except pydantic.ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ValidationError(f"Invalid {model.__name__} payload", errors=errors) from exc


_MISSING_DATE_VALUES = {"", "undefined", "null", "none"}


def parse_query_date(value: Optional[str], field: str = "date") -> Optional[date]:
    """Parse a loosely formatted date query parameter.

    Blank values and the literal strings ``undefined``/``null`` sent by
    browser clients mean "not supplied".
    """

    if value is None or value.strip().lower() in _MISSING_DATE_VALUES:
        return None
    try:
        return date_parser.parse(value.strip()).date()
    except (ValueError, OverflowError) as exc:
        raise ValidationError(f"Invalid {field}: {value!r}") from exc
