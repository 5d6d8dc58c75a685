"""Data access layer for the ledger engine.

This module provides low-level helpers that read the source workbook exported
by the external ERP store. Reconciliation logic belongs elsewhere; the engine
never writes to the workbook.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and reloading the Excel file.
3. Sheet operations: loading header-addressed rows and converting them into
   typed, immutable source records.
"""


from __future__ import annotations

import configparser
import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_LEDGER_EPOCH, AccountKind, DocumentKind, SheetName, StockDirection


CONFIG_FILE_NAME = "config.ini"
ACCOUNTS_SHEET = SheetName.ACCOUNTS.value
DOCUMENTS_SHEET = SheetName.DOCUMENTS.value
DOCUMENT_LINES_SHEET = SheetName.DOCUMENT_LINES.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
STOCK_MOVEMENTS_SHEET = SheetName.STOCK_MOVEMENTS.value

ZERO = Decimal("0")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    ledger_epoch: str = DEFAULT_LEDGER_EPOCH
    movement_window: Optional[int] = None
    company_id: Optional[str] = None
    pinned_reports: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AccountRow:
    """In-memory view of a row from the ``Accounts`` sheet."""

    account_id: str
    kind: str
    name: str
    account_code: str
    opening_balance: Decimal


@dataclass(frozen=True)
class DocumentLine:
    """One line item attached to a source document."""

    document_id: str
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    discount_value: Decimal = ZERO
    discount_type: str = "fixed"
    total: Optional[Decimal] = None


@dataclass(frozen=True)
class SourceDocument:
    """Fields shared by every document kind in the ``Documents`` sheet."""

    kind: ClassVar[DocumentKind]

    document_id: str
    account_kind: str
    account_id: Optional[str]
    account_name: str
    date: str
    reference: str
    status: str
    total_amount: Decimal
    created_at: str = ""
    updated_at: str = ""
    notes: Optional[str] = None
    lines: Tuple[DocumentLine, ...] = ()


@dataclass(frozen=True)
class InvoiceDocument(SourceDocument):
    """Sales invoice or purchase bill, optionally settled in part at posting."""

    kind: ClassVar[DocumentKind] = DocumentKind.INVOICE

    amount_received: Decimal = ZERO


@dataclass(frozen=True)
class ReturnDocument(SourceDocument):
    """Sales or purchase return crediting the account."""

    kind: ClassVar[DocumentKind] = DocumentKind.RETURN


@dataclass(frozen=True)
class ReceiptDocument(SourceDocument):
    """Standalone receipt (customer) or payment (vendor)."""

    kind: ClassVar[DocumentKind] = DocumentKind.RECEIPT

    invoice_id: Optional[str] = None


@dataclass(frozen=True)
class OrderDocument(SourceDocument):
    """Sales or purchase order; carried for completeness, never posted."""

    kind: ClassVar[DocumentKind] = DocumentKind.ORDER


Document = Union[InvoiceDocument, ReturnDocument, ReceiptDocument, OrderDocument]

_DOCUMENT_CLASSES: Dict[str, type] = {
    DocumentKind.INVOICE.value: InvoiceDocument,
    DocumentKind.RETURN.value: ReturnDocument,
    DocumentKind.RECEIPT.value: ReceiptDocument,
    DocumentKind.ORDER.value: OrderDocument,
}


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    product_code: str
    reorder_point: Decimal
    vendor_id: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None


@dataclass(frozen=True)
class StockMovementRow:
    """In-memory view of a row from the append-only ``StockMovements`` sheet."""

    movement_id: str
    company_id: Optional[str]
    product_id: str
    qty: Decimal
    direction: StockDirection
    reason: str
    source: str = ""
    source_id: Optional[str] = None
    source_ref: str = ""
    created_at: str = ""


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. When no explicit path is given the function walks
    up from the current working directory toward the filesystem root looking
    for a file named ``CONFIG_FILE_NAME``. The first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Required options live under ``[System]``. The ``[Ledger]``, ``[Stock]`` and
    ``[Session]`` sections are optional and fall back to defaults. Relative
    ``DataFile`` paths are expanded against ``base_path`` when provided, or
    against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required options is missing.
        ValueError: If ``MovementWindow`` is not a non-negative integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    ledger_epoch = parser.get("Ledger", "EpochFloor", fallback=DEFAULT_LEDGER_EPOCH).strip() or DEFAULT_LEDGER_EPOCH

    window_raw = parser.get("Stock", "MovementWindow", fallback="0").strip() or "0"
    try:
        window = int(window_raw)
    except ValueError as exc:
        raise ValueError(f"MovementWindow must be an integer, got '{window_raw}'") from exc
    if window < 0:
        raise ValueError(f"MovementWindow must not be negative, got {window}")

    company_id = parser.get("Session", "CompanyID", fallback="").strip() or None
    pinned_raw = parser.get("Session", "PinnedReports", fallback="")
    pinned_reports = tuple(name.strip() for name in pinned_raw.split(",") if name.strip())

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        ledger_epoch=ledger_epoch,
        movement_window=window or None,
        company_id=company_id,
        pinned_reports=pinned_reports,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the source workbook in read-only data mode.

    Args:
        data_file (Path): Filesystem path to the exported source workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file, data_only=True)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk so later reads observe external writes.

    Args:
        data_file (Path): Location of the workbook to reopen.

    Returns:
        Workbook: Freshly loaded workbook detached from the previous instance.
    """

    return open_workbook(data_file)


def safe_decimal(value: Any) -> Decimal:
    """Coerce ``value`` into a finite :class:`~decimal.Decimal`.

    Blank cells, non-numeric text, booleans, ``NaN`` and infinities all become
    zero so that malformed source data never propagates into balance math.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, float) and not math.isfinite(value):
        return ZERO
    text = str(value).strip().replace(",", "")
    if not text:
        return ZERO
    try:
        result = Decimal(text)
    except (InvalidOperation, ValueError):
        return ZERO
    return result if result.is_finite() else ZERO


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _iso_date(value: Any) -> str:
    """Render a cell as ``yyyy-mm-dd``; text is passed through unrepaired."""

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return _text(value)


def _iso_timestamp(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return _text(value)


def read_sheet_records(workbook: Workbook, sheet_name: str) -> Iterable[Dict[str, Any]]:
    """Yield each populated row of ``sheet_name`` as a header-keyed mapping.

    Columns are addressed by the titles in the first row, so the exporter may
    reorder or append columns freely. Fully empty rows are skipped, and a
    missing sheet yields nothing.
    """

    if sheet_name not in workbook.sheetnames:
        log.warning("Workbook has no '%s' sheet; treating it as empty", sheet_name)
        return

    sheet = workbook[sheet_name]
    headers: List[Optional[str]] = [_optional_text(cell.value) for cell in sheet[1]]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not any(cell is not None for cell in raw):
            continue
        yield {header: value for header, value in zip(headers, raw) if header}


def iter_accounts(workbook: Workbook) -> Iterable[AccountRow]:
    """Iterate over customer and vendor records on the ``Accounts`` sheet."""

    for record in read_sheet_records(workbook, ACCOUNTS_SHEET):
        yield deserialize_account(record)


def iter_document_lines(workbook: Workbook) -> Iterable[DocumentLine]:
    """Iterate over line items on the ``DocumentLines`` sheet."""

    for record in read_sheet_records(workbook, DOCUMENT_LINES_SHEET):
        yield deserialize_line(record)


def iter_documents(workbook: Workbook) -> Iterable[Document]:
    """Stream typed documents from the ``Documents`` sheet.

    Line items are grouped by ``DocumentID`` first and attached to their parent
    document. Rows whose ``Kind`` is not a known :class:`DocumentKind` are
    skipped with a warning rather than coerced into another shape.

    Args:
        workbook (Workbook): Workbook containing the document sheets.

    Yields:
        Document: One of :class:`InvoiceDocument`, :class:`ReturnDocument`,
            :class:`ReceiptDocument` or :class:`OrderDocument`.
    """

    lines_by_document: Dict[str, List[DocumentLine]] = {}
    for line in iter_document_lines(workbook):
        lines_by_document.setdefault(line.document_id, []).append(line)

    for record in read_sheet_records(workbook, DOCUMENTS_SHEET):
        document_id = _text(record.get("DocumentID"))
        document = deserialize_document(record, lines=lines_by_document.get(document_id, ()))
        if document is None:
            continue
        yield document


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for record in read_sheet_records(workbook, PRODUCTS_SHEET):
        yield deserialize_product(record)


def iter_stock_movements(workbook: Workbook) -> Iterable[StockMovementRow]:
    """Stream the append-only stock movement log in sheet order."""

    for record in read_sheet_records(workbook, STOCK_MOVEMENTS_SHEET):
        yield deserialize_movement(record)


def deserialize_account(record: Mapping[str, Any]) -> AccountRow:
    """Convert an ``Accounts`` row into an :class:`AccountRow`.

    ``Kind`` is normalized to lower case and defaults to ``customer``.
    ``OpeningBalance`` passes through :func:`safe_decimal`.
    """

    kind = _text(record.get("Kind")).lower() or AccountKind.CUSTOMER.value
    return AccountRow(
        account_id=_text(record.get("AccountID")),
        kind=kind,
        name=_text(record.get("Name")),
        account_code=_text(record.get("AccountCode")),
        opening_balance=safe_decimal(record.get("OpeningBalance")),
    )


def deserialize_line(record: Mapping[str, Any]) -> DocumentLine:
    """Convert a ``DocumentLines`` row into a :class:`DocumentLine`.

    A blank ``Total`` is kept as ``None`` so the narration can fall back to
    ``unit price x quantity``.
    """

    total_raw = record.get("Total")
    total = None if total_raw is None or _text(total_raw) == "" else safe_decimal(total_raw)
    return DocumentLine(
        document_id=_text(record.get("DocumentID")),
        product_name=_text(record.get("ProductName")) or "Item",
        quantity=safe_decimal(record.get("Quantity")),
        unit_price=safe_decimal(record.get("UnitPrice")),
        discount_value=safe_decimal(record.get("DiscountValue")),
        discount_type=_text(record.get("DiscountType")).lower() or "fixed",
        total=total,
    )


def deserialize_document(record: Mapping[str, Any], *, lines: Iterable[DocumentLine] = ()) -> Optional[Document]:
    """Convert a ``Documents`` row into the dataclass matching its ``Kind``.

    Args:
        record (Mapping[str, Any]): Header-keyed cell values.
        lines (Iterable[DocumentLine]): Line items already grouped for this
            document.

    Returns:
        Document | None: Typed document, or ``None`` when ``Kind`` is unknown.
    """

    kind = _text(record.get("Kind")).lower()
    document_cls = _DOCUMENT_CLASSES.get(kind)
    if document_cls is None:
        log.warning(
            "Skipping document '%s' with unsupported kind '%s'",
            _text(record.get("DocumentID")),
            kind,
        )
        return None

    fields: Dict[str, Any] = {
        "document_id": _text(record.get("DocumentID")),
        "account_kind": _text(record.get("AccountKind")).lower() or AccountKind.CUSTOMER.value,
        "account_id": _optional_text(record.get("AccountID")),
        "account_name": _text(record.get("AccountName")),
        "date": _iso_date(record.get("Date")),
        "reference": _text(record.get("Reference")),
        "status": _text(record.get("Status")),
        "total_amount": safe_decimal(record.get("TotalAmount")),
        "created_at": _iso_timestamp(record.get("CreatedAt")),
        "updated_at": _iso_timestamp(record.get("UpdatedAt")),
        "notes": _optional_text(record.get("Notes")),
        "lines": tuple(lines),
    }
    if document_cls is InvoiceDocument:
        fields["amount_received"] = safe_decimal(record.get("AmountReceived"))
    elif document_cls is ReceiptDocument:
        fields["invoice_id"] = _optional_text(record.get("InvoiceID"))
    return document_cls(**fields)


def deserialize_product(record: Mapping[str, Any]) -> ProductRow:
    """Convert a ``Products`` row into a :class:`ProductRow`."""

    return ProductRow(
        product_id=_text(record.get("ProductID")),
        name=_text(record.get("Name")),
        product_code=_text(record.get("ProductCode")),
        reorder_point=safe_decimal(record.get("ReorderPoint")),
        vendor_id=_optional_text(record.get("VendorID")),
        category=_optional_text(record.get("Category")),
        unit=_optional_text(record.get("Unit")),
    )


def parse_direction(value: Any) -> StockDirection:
    """Map a raw direction cell onto :class:`StockDirection`.

    Only ``IN`` (any case) increases stock; every other value is read as
    ``OUT``, and values other than ``IN``/``OUT`` are logged.
    """

    text = _text(value).upper()
    if text == StockDirection.IN.value:
        return StockDirection.IN
    if text != StockDirection.OUT.value:
        log.warning("Unrecognised stock direction '%s'; reading it as OUT", text)
    return StockDirection.OUT


def deserialize_movement(record: Mapping[str, Any]) -> StockMovementRow:
    """Convert a ``StockMovements`` row into a :class:`StockMovementRow`.

    ``Qty`` is stored as a magnitude; the sign lives in ``Direction``.
    """

    return StockMovementRow(
        movement_id=_text(record.get("MovementID")),
        company_id=_optional_text(record.get("CompanyID")),
        product_id=_text(record.get("ProductID")),
        qty=abs(safe_decimal(record.get("Qty"))),
        direction=parse_direction(record.get("Direction")),
        reason=_text(record.get("Reason")),
        source=_text(record.get("Source")),
        source_id=_optional_text(record.get("SourceID")),
        source_ref=_text(record.get("SourceRef")),
        created_at=_iso_timestamp(record.get("CreatedAt")),
    )
