# Overview: Error taxonomy shared by the ledger services and the HTTP layer.

"""
Every failure the ledger reports carries a stable ``code`` (for clients),
an HTTP ``status_code`` (for routes) and a ``details`` dict identifying the
offending sale or inventory item.

Raising any of these inside a unit of work rolls the whole unit back.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for rejected ledger operations."""
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(LedgerError, ValueError):
    """Malformed or empty request; rejected before any storage access."""
    code = "validation_error"
    status_code = 400


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class SaleNotFound(NotFound):
    code = "sale_not_found"


class ItemNotFound(NotFound):
    code = "item_not_found"


class ItemInactive(LedgerError):
    """Inventory item exists but has been soft-deleted."""
    code = "item_inactive"
    status_code = 409


class InsufficientStock(LedgerError):
    code = "insufficient_stock"
    status_code = 409


class AlreadyPaid(LedgerError):
    code = "already_paid"
    status_code = 409


class CannotEditPaid(LedgerError):
    code = "cannot_edit_paid"
    status_code = 409


class ConstraintViolation(LedgerError):
    """Unique key or check constraint rejected the write."""
    code = "constraint_violation"
    status_code = 409
