# Overview: Domain error taxonomy shared by services and routes.

"""
Every error carries the HTTP status the REST layer should answer with and an
optional `details` dict that is merged into the JSON error body.
"""

from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for domain errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        body.update(self.details)
        return body


class ValidationError(StockLedgerError, ValueError):
    """400-level input problem (malformed amounts, non-positive quantities)."""
    status_code = 400


class AuthenticationError(StockLedgerError):
    status_code = 401


class NotFoundError(StockLedgerError):
    """Missing product, inventory record, invoice or user."""
    status_code = 404


class DuplicateError(StockLedgerError):
    """409: inventory already exists for product, payment id already bound, etc."""
    status_code = 409


class InsufficientStockError(StockLedgerError):
    """
    Raised when a movement would drive stock negative, or an invoice asks for
    more than is available.
    """
    status_code = 409


class AlreadyActiveError(StockLedgerError):
    status_code = 409


class InvalidStateTransitionError(StockLedgerError):
    """Transition out of a terminal state, or an operation on an inactive record."""
    status_code = 409


class InventoryUnavailableError(InvalidStateTransitionError):
    """
    Settlement found a product's inventory record missing or inactive.

    Retryable: restoring or creating the record lets a redelivered
    confirmation settle.
    """
    status_code = 409


class PaymentGatewayError(StockLedgerError):
    """Upstream gateway failure; callers should treat it as retryable."""
    status_code = 502
