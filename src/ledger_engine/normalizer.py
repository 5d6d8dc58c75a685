"""Turn typed source documents into single-sided ledger entries.

Every function here is pure: the same account and documents always produce the
same entries, and nothing is read from or written to the workbook.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .constants import (
    DEFAULT_LEDGER_EPOCH,
    OPENING_BALANCE_DESCRIPTION,
    OPENING_BALANCE_REFERENCE,
    ORDER_HINT_INVOICE,
    ORDER_HINT_INVOICE_PAYMENT,
    ORDER_HINT_OPENING,
    ORDER_HINT_RECEIPT,
    ORDER_HINT_RETURN,
    AccountKind,
    DocumentStatus,
    EntryType,
)
from .data_manager import (
    AccountRow,
    Document,
    DocumentLine,
    InvoiceDocument,
    ReceiptDocument,
    ReturnDocument,
    SourceDocument,
)


ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerEntry:
    """One debit-or-credit posting on an account statement."""

    id: str
    date: str
    description: str
    reference: str
    type: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    posted_at: str = ""
    order_hint: Optional[int] = None
    detail_narration: Optional[str] = None
    view_kind: Optional[str] = None
    view_id: Optional[str] = None
    is_opening: bool = False

    @property
    def amount(self) -> Decimal:
        """Signed effect of the entry on the running balance."""
        return self.debit - self.credit


@dataclass(frozen=True)
class _KindLabels:
    id_prefix: str
    invoice_type: EntryType
    invoice_description: str
    payment_type: EntryType
    payment_id_prefix: str
    invoice_payment_description: str
    return_description: str
    receipt_id_prefix: str
    receipt_description: str


_LABELS: Dict[str, _KindLabels] = {
    AccountKind.CUSTOMER.value: _KindLabels(
        id_prefix="inv",
        invoice_type=EntryType.INVOICE,
        invoice_description="Credit Sales",
        payment_type=EntryType.RECEIPT,
        payment_id_prefix="rcp",
        invoice_payment_description="Payment Received",
        return_description="Sales Return",
        receipt_id_prefix="rec",
        receipt_description="Receipt",
    ),
    AccountKind.VENDOR.value: _KindLabels(
        id_prefix="bill",
        invoice_type=EntryType.BILL,
        invoice_description="Purchase Bill",
        payment_type=EntryType.PAYMENT,
        payment_id_prefix="pay",
        invoice_payment_description="Payment Made",
        return_description="Purchase Return",
        receipt_id_prefix="pmt",
        receipt_description="Payment",
    ),
}


def labels_for(account_kind: str) -> _KindLabels:
    """Return the wording used for ``account_kind``, defaulting to customer."""
    return _LABELS.get(str(account_kind).lower(), _LABELS[AccountKind.CUSTOMER.value])


def is_visible_status(status: Optional[str], *, include_void: bool = False, include_deleted: bool = False) -> bool:
    """Return ``True`` when a document with ``status`` belongs on a ledger.

    ``void`` and ``deleted`` documents are hidden unless the caller opts in to
    the matching flag. Comparison ignores case and surrounding whitespace.
    """

    normalized = str(status or "").strip().lower()
    if normalized == DocumentStatus.VOID.value:
        return include_void
    if normalized == DocumentStatus.DELETED.value:
        return include_deleted
    return True


def format_amount(value: Decimal) -> str:
    """Format a decimal with thousands separators and no redundant zeros."""

    if value == value.to_integral_value():
        return f"{int(value):,}"
    return f"{value.normalize():,}"


def build_items_narration(lines: Iterable[DocumentLine]) -> str:
    """Describe line items as ``name rate x qty (discount ..) = total`` rows."""

    rendered: List[str] = []
    for line in lines:
        total = line.total if line.total is not None else line.unit_price * line.quantity
        discount_part = ""
        if line.discount_value > ZERO:
            if line.discount_type == "percent":
                discount_part = f" (discount {format_amount(line.discount_value)}%)"
            else:
                discount_part = f" (discount {format_amount(line.discount_value)})"
        rendered.append(
            f"{line.product_name} {format_amount(line.unit_price)} x "
            f"{format_amount(line.quantity)}{discount_part} = {format_amount(total)}"
        )
    return "\n".join(rendered)


def opening_balance_entry(account: AccountRow, *, epoch: str = DEFAULT_LEDGER_EPOCH) -> Optional[LedgerEntry]:
    """Build the synthetic opening entry for ``account``.

    A positive opening balance is posted as a debit and a negative one as a
    credit of its magnitude. Accounts that open at zero get no entry.

    Args:
        account (AccountRow): Account whose opening balance should be posted.
        epoch (str): ISO date at which the ledger starts.

    Returns:
        LedgerEntry | None: The opening entry, or ``None`` for a zero balance.
    """

    opening = account.opening_balance
    if opening == ZERO:
        return None
    labels = labels_for(account.kind)
    return LedgerEntry(
        id=f"open-{account.account_id}",
        date=epoch,
        posted_at=f"{epoch}T00:00:00.000Z",
        order_hint=ORDER_HINT_OPENING,
        description=OPENING_BALANCE_DESCRIPTION,
        reference=OPENING_BALANCE_REFERENCE,
        type=labels.invoice_type.value,
        debit=opening if opening > ZERO else ZERO,
        credit=abs(opening) if opening < ZERO else ZERO,
        is_opening=True,
    )


def posted_at(document: SourceDocument) -> str:
    """Return the best available posting timestamp for ``document``."""
    return document.created_at or document.updated_at or document.date or ""


def _sides(amount: Decimal, *, credit: bool = False) -> Tuple[Decimal, Decimal]:
    """Split a signed amount into ``(debit, credit)`` magnitudes.

    ``credit`` names the side a positive amount normally lands on; a negative
    amount is posted on the opposite side.
    """

    signed = -amount if credit else amount
    if signed > ZERO:
        return signed, ZERO
    return ZERO, -signed


def _normalize_invoice(document: InvoiceDocument, labels: _KindLabels) -> List[LedgerEntry]:
    reference = document.reference or document.document_id
    narration = build_items_narration(document.lines) or None
    entries: List[LedgerEntry] = []
    if document.total_amount != ZERO:
        debit, credit = _sides(document.total_amount)
        entries.append(
            LedgerEntry(
                id=f"{labels.id_prefix}-{document.document_id}",
                date=document.date,
                posted_at=posted_at(document),
                order_hint=ORDER_HINT_INVOICE,
                description=f"{labels.invoice_description} - {document.document_id}",
                detail_narration=narration,
                reference=reference,
                type=labels.invoice_type.value,
                debit=debit,
                credit=credit,
                view_kind=document.kind.value,
                view_id=document.document_id,
            )
        )
    if document.amount_received != ZERO:
        debit, credit = _sides(document.amount_received, credit=True)
        entries.append(
            LedgerEntry(
                id=f"{labels.payment_id_prefix}-{document.document_id}",
                date=document.date,
                posted_at=posted_at(document),
                order_hint=ORDER_HINT_INVOICE_PAYMENT,
                description=labels.invoice_payment_description,
                detail_narration=narration,
                reference=reference,
                type=labels.payment_type.value,
                debit=debit,
                credit=credit,
                view_kind=document.kind.value,
                view_id=document.document_id,
            )
        )
    return entries


def _normalize_return(document: ReturnDocument, labels: _KindLabels) -> List[LedgerEntry]:
    if document.total_amount == ZERO:
        return []
    debit, credit = _sides(document.total_amount, credit=True)
    return [
        LedgerEntry(
            id=f"ret-{document.document_id}",
            date=document.date,
            posted_at=posted_at(document),
            order_hint=ORDER_HINT_RETURN,
            description=f"{labels.return_description} - {document.document_id}",
            detail_narration=build_items_narration(document.lines) or None,
            reference=document.reference or document.document_id,
            type=EntryType.RETURN.value,
            debit=debit,
            credit=credit,
            view_kind=document.kind.value,
            view_id=document.document_id,
        )
    ]


def _normalize_receipt(document: ReceiptDocument, labels: _KindLabels) -> List[LedgerEntry]:
    if document.total_amount == ZERO:
        return []
    debit, credit = _sides(document.total_amount, credit=True)
    return [
        LedgerEntry(
            id=f"{labels.receipt_id_prefix}-{document.document_id}",
            date=document.date,
            posted_at=posted_at(document),
            order_hint=ORDER_HINT_RECEIPT,
            description=f"{labels.receipt_description} - {document.document_id}",
            detail_narration=document.notes,
            reference=document.reference or document.document_id,
            type=labels.payment_type.value,
            debit=debit,
            credit=credit,
            view_kind=document.kind.value,
            view_id=document.document_id,
        )
    ]


def normalize_document(document: Document, *, account_kind: str = AccountKind.CUSTOMER.value) -> List[LedgerEntry]:
    """Map one source document onto zero or more ledger entries.

    Invoices yield a debit for their total and, when part of the amount was
    settled at posting, a same-date credit sharing the invoice reference.
    Returns and standalone receipts yield one credit each. Orders are not
    postings and yield nothing. A negative amount is posted as its magnitude
    on the opposite side, and a zero amount posts nothing.

    Args:
        document (Document): Typed source document.
        account_kind (str): ``customer`` or ``vendor``; selects entry types and
            descriptions.

    Returns:
        list[LedgerEntry]: Entries in document order (debit before credit).
    """

    labels = labels_for(account_kind)
    if isinstance(document, InvoiceDocument):
        return _normalize_invoice(document, labels)
    if isinstance(document, ReturnDocument):
        return _normalize_return(document, labels)
    if isinstance(document, ReceiptDocument):
        return _normalize_receipt(document, labels)
    # Orders commit nothing to the account.
    return []


def normalize_documents(
    documents: Iterable[Document],
    *,
    account_kind: str = AccountKind.CUSTOMER.value,
    include_void: bool = False,
    include_deleted: bool = False,
) -> List[LedgerEntry]:
    """Apply the visibility filter, then normalize each remaining document."""

    entries: List[LedgerEntry] = []
    for document in documents:
        if not is_visible_status(document.status, include_void=include_void, include_deleted=include_deleted):
            continue
        entries.extend(normalize_document(document, account_kind=account_kind))
    return entries
