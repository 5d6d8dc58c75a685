"""Enumerations shared across the ledger engine modules.

Centralises domain constants so that the data access layer (DAL), the
reconciliation stages, and the CLI rely on a single source of truth for
entry types, ordering hints, and stock movement semantics.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Date assigned to synthetic opening-balance entries.
DEFAULT_LEDGER_EPOCH = "2023-10-01"

OPENING_BALANCE_DESCRIPTION = "Opening Balance"
OPENING_BALANCE_REFERENCE = "-"

# Within one date and posting timestamp, lower hints sort first.
ORDER_HINT_OPENING = -100
ORDER_HINT_INVOICE = 10
ORDER_HINT_INVOICE_PAYMENT = 20
ORDER_HINT_RETURN = 30
ORDER_HINT_RECEIPT = 40

UNKNOWN_TYPE_PRIORITY = 99

# Upper bound on memoized results kept per cache bucket.
RESULT_CACHE_LIMIT = 64


class AccountKind(str, Enum):
    """Enumerate the counterparties a ledger can be drawn for."""

    CUSTOMER = "customer"
    VENDOR = "vendor"


class EntryType(str, Enum):
    """Enumerate the posting types that appear on a ledger statement."""

    INVOICE = "Invoice"
    BILL = "Bill"
    RETURN = "Return"
    RECEIPT = "Receipt"
    PAYMENT = "Payment"


TYPE_PRIORITY: Dict[str, int] = {
    EntryType.INVOICE.value: 1,
    EntryType.BILL.value: 1,
    EntryType.RETURN.value: 2,
    EntryType.RECEIPT.value: 3,
    EntryType.PAYMENT.value: 3,
}


class DocumentKind(str, Enum):
    """Enumerate the source document kinds supplied by the external store."""

    INVOICE = "invoice"
    RETURN = "return"
    RECEIPT = "receipt"
    ORDER = "order"


class DocumentStatus(str, Enum):
    """Statuses that hide a document from ledgers unless explicitly requested."""

    VOID = "void"
    DELETED = "deleted"


class StockDirection(str, Enum):
    """Direction of a stock movement; quantities are always magnitudes."""

    IN = "IN"
    OUT = "OUT"


class StockReason(str, Enum):
    """Movement reasons that carry reservation semantics."""

    INVOICE_PENDING = "invoice_pending"
    INVOICE_REVERSAL = "invoice_reversal"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class BalanceSide(str, Enum):
    """Side on which an account balance closes."""

    DEBIT = "DR"
    CREDIT = "CR"
    ZERO = "Zero"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names read by the DAL."""

    ACCOUNTS = "Accounts"
    DOCUMENTS = "Documents"
    DOCUMENT_LINES = "DocumentLines"
    PRODUCTS = "Products"
    STOCK_MOVEMENTS = "StockMovements"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_LEDGER_EPOCH",
    "OPENING_BALANCE_DESCRIPTION",
    "OPENING_BALANCE_REFERENCE",
    "ORDER_HINT_OPENING",
    "ORDER_HINT_INVOICE",
    "ORDER_HINT_INVOICE_PAYMENT",
    "ORDER_HINT_RETURN",
    "ORDER_HINT_RECEIPT",
    "UNKNOWN_TYPE_PRIORITY",
    "RESULT_CACHE_LIMIT",
    "TYPE_PRIORITY",
    "AccountKind",
    "EntryType",
    "DocumentKind",
    "DocumentStatus",
    "StockDirection",
    "StockReason",
    "BalanceSide",
    "SheetName",
]
