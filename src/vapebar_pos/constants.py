"""Enumerations and sheet layouts shared across VapeBar POS modules.

Centralises domain constants so that the row store adapter, the inventory
index, and the transaction engines rely on a single source of truth for
sheet names, header rows, and the string values written to the workbook.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Item identifier written on sale rows that cover several inventory lines.
BULK_ITEM_ID = "BULK"
BULK_CATEGORY = "Bulk"
LOAN_ID_PREFIX = "LOAN-"
UNKNOWN_CUSTOMER = "Unknown Customer"
DEFAULT_LOW_STOCK_THRESHOLD = 10


class Category(str, Enum):
    """Enumerate the inventory categories the shop treats specially.

    Any other free-text category is accepted on inventory rows.
    """

    JUICE_OR_POD = "Vape Juice/Pod"
    DEVICE = "Vape Device"


class SaleType(str, Enum):
    """Enumerate how a sale was rung up."""

    RETAIL = "retail"
    BULK = "bulk"


class PaymentMethod(str, Enum):
    """Enumerate the payment methods offered at the counter.

    Sale rows may carry other free-text methods; only ``LOAN`` has special
    meaning because it opens a loan record.
    """

    CASH = "Cash"
    GCASH = "GCash"
    MAYA = "Maya"
    LOAN = "Loan"


class LoanStatus(str, Enum):
    """Enumerate loan states. Transitions only go from unpaid to paid."""

    UNPAID = "Unpaid"
    PAID = "Paid"


class ClaimStatus(str, Enum):
    """Enumerate warranty claim states."""

    COMPLETED = "Completed"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the row store."""

    INVENTORY = "Inventory"
    SALES = "Sales"
    LOANS = "Loans"
    WARRANTY = "Warranty"


SHEET_HEADERS: Mapping[str, Sequence[str]] = {
    SheetName.INVENTORY.value: [
        "ID",
        "Category",
        "Item Name",
        "Version",
        "Flavor",
        "Quantity",
        "Price",
        "Date Added",
        "Notes",
        "Cost",
    ],
    SheetName.SALES.value: [
        "Sale ID",
        "Item ID",
        "Item Name",
        "Category",
        "Quantity Sold",
        "Price Per Unit",
        "Total",
        "Date",
        "Customer",
        "Sale Type",
        "Payment Method",
        "Notes",
    ],
    SheetName.LOANS.value: [
        "Loan ID",
        "Sale ID",
        "Customer",
        "Item Name",
        "Amount",
        "Date Issued",
        "Due Date",
        "Status",
        "Date Paid",
        "Notes",
    ],
    SheetName.WARRANTY.value: [
        "Claim ID",
        "Date",
        "Product ID",
        "Product Name",
        "Quantity",
        "Reason",
        "Customer",
        "Notes",
        "Status",
    ],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "BULK_ITEM_ID",
    "BULK_CATEGORY",
    "LOAN_ID_PREFIX",
    "UNKNOWN_CUSTOMER",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "Category",
    "SaleType",
    "PaymentMethod",
    "LoanStatus",
    "ClaimStatus",
    "SheetName",
    "SHEET_HEADERS",
]
