"""Error taxonomy shared by the row store adapter and the business layer."""

from __future__ import annotations

from typing import Optional


class PosError(Exception):
    """Base class for every error raised deliberately by VapeBar POS.

    ``records_written`` is set when the operation failed after it had
    already written to the workbook. Those writes are not rolled back, so
    callers holding the workbook in memory must still save it.
    """

    records_written: bool = False


class StoreError(PosError):
    """Raised when the backing workbook rejects or fails a read or write."""


class BusinessRuleViolation(PosError):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when request input is missing or cannot be parsed."""


class NotFoundError(BusinessRuleViolation):
    """Raised when a referenced record is unknown."""


class ItemNotFoundError(NotFoundError):
    """Raised when an inventory item identifier has no matching row."""


class LoanNotFoundError(NotFoundError):
    """Raised when a loan identifier has no matching row."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a decrement would drive an item's quantity below zero.

    ``sale_id`` is set when the error aborts a bulk sale whose sale record
    was already written.
    """

    sale_id: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        item_id: Optional[str] = None,
        requested: Optional[int] = None,
        available: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.item_id = item_id
        self.requested = requested
        self.available = available


__all__ = [
    "PosError",
    "StoreError",
    "BusinessRuleViolation",
    "ValidationError",
    "NotFoundError",
    "ItemNotFoundError",
    "LoanNotFoundError",
    "InsufficientStockError",
]
