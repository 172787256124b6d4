"""Error types raised by the brokerage_ledger core and storage layer."""
from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Base class for all application errors."""


class ValidationError(LedgerError):
    """Raised when input is rejected before any state changes.

    ``errors`` holds field-level details (``{"field": ..., "message": ...}``)
    when the failure came from parsing a structured payload.
    """

    def __init__(self, message: str, errors: Optional[list[dict[str, object]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class NotFoundError(LedgerError):
    """Raised when a referenced party or invoice does not exist."""

    def __init__(self, entity: str, identifier: object) -> None:
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier
        self.message = f"{entity.capitalize()} not found"


__all__ = ["LedgerError", "ValidationError", "NotFoundError"]
