"""Reconciliation layer for the ledger engine.

This module wires the pure stages (normalizer, identity resolver, ordering,
running balances, stock aggregation, filters) into the pipelines callers use:
account statements, the account balance report, and stock reports. Source
records come from the Data Access Layer (DAL); every result is recomputed
from those records and memoized by content, so refreshing the context is the
only way to observe external writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .balances import (
    AccountBalance,
    StatementTotals,
    running_balances,
    sort_balance_rows,
    summarize_account,
    summarize_entries,
)
from .constants import DEFAULT_LEDGER_EPOCH, EXPECTED_SCHEMA_VERSION, RESULT_CACHE_LIMIT, AccountKind
from .filters import filter_balances, filter_by_id, filter_entries, filter_movements, in_date_range, search_accounts
from .identity import AuditHook, FallbackMatch, IdentityResolver, select_documents
from .normalizer import LedgerEntry, normalize_documents, opening_balance_entry
from .ordering import sort_entries
from .stock import LowInventoryRow, StockPosition, low_inventory_report, scope_to_company, windowed_positions


class LedgerEngineError(Exception):
    """Base class for errors raised by the reconciliation layer."""


class MissingReferenceError(LedgerEngineError):
    """Raised when a referenced account or product is unknown."""


@dataclass(frozen=True)
class SessionContext:
    """Ambient selections that scope a session: active company and pinned reports."""

    company_id: Optional[str] = None
    pinned_reports: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, source workbook, session, and caches."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    session: SessionContext = field(default_factory=SessionContext)
    _cache: Dict[str, Dict[Any, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class AccountStatement:
    """An account ledger ready for presentation.

    ``entries`` holds the presented (filtered) entries in ledger order while
    ``balances`` maps every entry id of the full ledger to its running balance,
    so a filtered row still shows the true cumulative balance.
    """

    account: data_manager.AccountRow
    entries: Tuple[LedgerEntry, ...]
    balances: Dict[str, Decimal]
    totals: StatementTotals
    fallback_matches: Tuple[FallbackMatch, ...] = ()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[Any, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Source buckets hold the records loaded from the workbook; result buckets
    hold derived values keyed by the content of their inputs.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict: Mutable mapping for the bucket.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def memoize(
    context: RuntimeContext,
    bucket_name: str,
    key: Hashable,
    compute: Callable[[], Any],
    *,
    max_entries: int = RESULT_CACHE_LIMIT,
) -> Any:
    """Return the cached value for ``key`` or compute and store it.

    ``key`` must be built from the immutable inputs and parameters of
    ``compute``; two calls with equal inputs share one result. Each bucket
    keeps at most ``max_entries`` results and evicts the least recently used
    one first.
    """

    bucket = _get_cache_bucket(context, bucket_name)
    if key in bucket:
        log.debug("Cache hit in bucket '%s'", bucket_name)
        value = bucket.pop(key)
        bucket[key] = value
        return value
    value = compute()
    bucket[key] = value
    while len(bucket) > max_entries:
        evicted = next(iter(bucket))
        del bucket[evicted]
        log.debug("Evicted %r from cache bucket '%s'", evicted, bucket_name)
    return value


def _ensure_accounts_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the account bucket with ``all`` rows and a ``by_id`` lookup."""

    bucket = _get_cache_bucket(context, "accounts")
    if "all" not in bucket:
        all_accounts = tuple(data_manager.iter_accounts(context.workbook))
        bucket["all"] = all_accounts
        bucket["by_id"] = {account.account_id: account for account in all_accounts}
        log.debug("Populated accounts cache with %d entries", len(all_accounts))
    return bucket


def _ensure_documents_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "documents")
    if "all" not in bucket:
        bucket["all"] = tuple(data_manager.iter_documents(context.workbook))
        log.debug("Populated documents cache with %d entries", len(bucket["all"]))
    return bucket


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = tuple(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_movements_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "movements")
    if "all" not in bucket:
        bucket["all"] = tuple(data_manager.iter_stock_movements(context.workbook))
        log.debug("Populated stock movements cache with %d entries", len(bucket["all"]))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the source workbook.

    The session starts with the company and pinned reports declared in the
    ``[Session]`` section of ``config.ini``.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context with an empty cache.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    session = SessionContext(company_id=settings.company_id, pinned_reports=settings.pinned_reports)
    return RuntimeContext(settings=settings, workbook=workbook, session=session)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate that the configured schema version matches the engine.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook so the next query sees externally written records.

    Returns:
        RuntimeContext: Fresh context sharing settings and session but with a
            newly opened workbook and an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, session=context.session)


def start_session(
    context: RuntimeContext,
    *,
    company_id: Optional[str],
    pinned_reports: Sequence[str] = (),
) -> RuntimeContext:
    """Return a context scoped to ``company_id`` with its own empty cache."""

    session = SessionContext(company_id=company_id or None, pinned_reports=tuple(pinned_reports))
    log.info("Started session for company '%s'", session.company_id or "*")
    return replace(context, session=session, _cache={})


def end_session(context: RuntimeContext) -> RuntimeContext:
    """Clear the session selections and every cached record and result."""

    log.info("Ended session for company '%s'", context.session.company_id or "*")
    return replace(context, session=SessionContext(), _cache={})


def list_pinned_reports(context: RuntimeContext) -> List[str]:
    return list(context.session.pinned_reports)


def list_accounts(context: RuntimeContext, *, kind: Optional[str] = None) -> List[data_manager.AccountRow]:
    """Return accounts in sheet order, optionally only one ``kind``."""

    accounts = _ensure_accounts_cache(context)["all"]
    if kind is None:
        return list(accounts)
    return [account for account in accounts if account.kind == kind]


def find_accounts(context: RuntimeContext, query: Optional[str], *, kind: Optional[str] = None) -> List[data_manager.AccountRow]:
    """Account picker: keyword search over name, code, and id."""
    return search_accounts(list_accounts(context, kind=kind), query)


def list_documents(context: RuntimeContext) -> List[data_manager.Document]:
    return list(_ensure_documents_cache(context)["all"])


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    return list(_ensure_products_cache(context)["all"])


def list_stock_movements(context: RuntimeContext) -> List[data_manager.StockMovementRow]:
    """Return the movement log scoped to the session's company."""

    movements = _ensure_movements_cache(context)["all"]
    return scope_to_company(movements, context.session.company_id)


def get_account(context: RuntimeContext, account_id: str) -> data_manager.AccountRow:
    """Resolve an account by its identifier.

    Raises:
        MissingReferenceError: If ``account_id`` is absent from the source.
    """

    cache = _ensure_accounts_cache(context)
    try:
        return cache["by_id"][account_id]
    except KeyError as exc:
        log.warning("Account lookup failed for id '%s'", account_id)
        raise MissingReferenceError(f"Unknown account id: {account_id}") from exc


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the source.
    """

    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def build_account_ledger(
    account: data_manager.AccountRow,
    documents: Sequence[data_manager.Document],
    *,
    epoch: str = DEFAULT_LEDGER_EPOCH,
    include_void: bool = False,
    include_deleted: bool = False,
    audit_hook: Optional[AuditHook] = None,
) -> Tuple[List[LedgerEntry], List[FallbackMatch]]:
    """Build the complete, ordered ledger for ``account``.

    Only documents of the account's kind are considered. Those attributed to
    the account (by id, or by name when the document carries no id) are
    filtered for visibility and normalized, the opening entry is prepended, and
    the result is sorted into ledger order. Unattributed documents are left
    out without error.

    Args:
        account (data_manager.AccountRow): Account to report on.
        documents (Sequence[data_manager.Document]): All source documents.
        epoch (str): Date of the opening-balance entry.
        include_void (bool): Keep documents whose status is ``void``.
        include_deleted (bool): Keep documents whose status is ``deleted``.
        audit_hook (AuditHook | None): Receives each name-only match.

    Returns:
        tuple[list[LedgerEntry], list[FallbackMatch]]: Ordered entries and the
            name-only matches accepted while selecting documents.
    """

    resolver = IdentityResolver(account, audit_hook=audit_hook)
    candidates = [document for document in documents if document.account_kind == account.kind]
    selected = select_documents(resolver, candidates)

    entries: List[LedgerEntry] = []
    opening = opening_balance_entry(account, epoch=epoch)
    if opening is not None:
        entries.append(opening)
    entries.extend(
        normalize_documents(
            selected,
            account_kind=account.kind,
            include_void=include_void,
            include_deleted=include_deleted,
        )
    )
    return sort_entries(entries), list(resolver.fallback_matches)


def compose_statement(
    account: data_manager.AccountRow,
    documents: Sequence[data_manager.Document],
    *,
    epoch: str = DEFAULT_LEDGER_EPOCH,
    start: Optional[str] = None,
    end: Optional[str] = None,
    entry_type: Optional[str] = None,
    query: Optional[str] = None,
    include_void: bool = False,
    include_deleted: bool = False,
    audit_hook: Optional[AuditHook] = None,
) -> AccountStatement:
    """Pure statement pipeline: ledger, running balances, then presentation filters."""

    ordered, fallback = build_account_ledger(
        account,
        documents,
        epoch=epoch,
        include_void=include_void,
        include_deleted=include_deleted,
        audit_hook=audit_hook,
    )
    balances = running_balances(ordered)
    presented = filter_entries(ordered, start=start, end=end, entry_type=entry_type, query=query)
    return AccountStatement(
        account=account,
        entries=tuple(presented),
        balances=balances,
        totals=summarize_entries(presented, balances),
        fallback_matches=tuple(fallback),
    )


def account_statement(
    context: RuntimeContext,
    account_id: str,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    entry_type: Optional[str] = None,
    query: Optional[str] = None,
    include_void: bool = False,
    include_deleted: bool = False,
    audit_hook: Optional[AuditHook] = None,
) -> AccountStatement:
    """Produce the statement for ``account_id`` from the context's sources.

    Results are memoized on the account record, the document set, and every
    filter parameter. ``audit_hook`` only fires when the statement is actually
    computed; cached statements still carry their ``fallback_matches``.

    Raises:
        MissingReferenceError: If ``account_id`` is unknown.
    """

    account = get_account(context, account_id)
    documents = _ensure_documents_cache(context)["all"]
    epoch = context.settings.ledger_epoch
    key = (account, documents, epoch, start, end, entry_type, query, include_void, include_deleted)

    def compute() -> AccountStatement:
        statement = compose_statement(
            account,
            documents,
            epoch=epoch,
            start=start,
            end=end,
            entry_type=entry_type,
            query=query,
            include_void=include_void,
            include_deleted=include_deleted,
            audit_hook=audit_hook,
        )
        log.info(
            "Built statement for account '%s': %d entries, closing balance %s",
            account.account_id,
            len(statement.entries),
            statement.totals.closing_balance,
        )
        return statement

    return memoize(context, "statements", key, compute)


def compose_balance_report(
    accounts: Sequence[data_manager.AccountRow],
    documents: Sequence[data_manager.Document],
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[AccountBalance]:
    """Pure balance report: one summary per account over the date range.

    Rows are ordered by the magnitude of their closing balance, largest first.
    """

    rows: List[AccountBalance] = []
    for account in accounts:
        entries, _ = build_account_ledger(account, documents)
        in_range = [entry for entry in entries if not entry.is_opening and in_date_range(entry.date, start, end)]
        rows.append(summarize_account(account, in_range))
    return sort_balance_rows(rows)


def account_balance_report(
    context: RuntimeContext,
    *,
    kind: str = AccountKind.CUSTOMER.value,
    start: Optional[str] = None,
    end: Optional[str] = None,
    query: Optional[str] = None,
    side: Optional[str] = None,
) -> List[AccountBalance]:
    """Opening, sales, returns, receipts, and closing per account of ``kind``."""

    accounts = tuple(list_accounts(context, kind=kind))
    documents = _ensure_documents_cache(context)["all"]
    key = (accounts, documents, start, end)
    rows = memoize(
        context,
        "balance_reports",
        key,
        lambda: compose_balance_report(accounts, documents, start=start, end=end),
    )
    selected = filter_balances(rows, query=query, side=side)
    log.info("Balance report for %s accounts: %d of %d rows", kind, len(selected), len(rows))
    return selected


def stock_positions(context: RuntimeContext, *, product_id: Optional[str] = None) -> Dict[str, StockPosition]:
    """Compute stock positions from the session's movement window.

    Args:
        context (RuntimeContext): Runtime context providing the movement log.
        product_id (str | None): Restrict the result to one product. A product
            with no movements reports zero quantities.

    Returns:
        dict[str, StockPosition]: Positions keyed by product id.
    """

    movements = tuple(list_stock_movements(context))
    window = context.settings.movement_window
    positions = memoize(
        context,
        "stock_positions",
        (movements, window),
        lambda: windowed_positions(movements, window),
    )
    if product_id is None:
        return dict(positions)
    position = positions.get(product_id) or StockPosition(
        product_id=product_id,
        on_hand=Decimal("0"),
        reserved=Decimal("0"),
        available=Decimal("0"),
    )
    return {product_id: position}


def stock_ledger(
    context: RuntimeContext,
    *,
    query: Optional[str] = None,
    direction: Optional[str] = None,
    product_id: Optional[str] = None,
) -> List[data_manager.StockMovementRow]:
    """Search the session's movement log by keywords, direction, and product."""

    movements = filter_by_id(list_stock_movements(context), product_id, id_of=lambda movement: movement.product_id)
    products = _ensure_products_cache(context)["by_id"]
    return filter_movements(movements, products=products, query=query, direction=direction)


def low_inventory(
    context: RuntimeContext,
    *,
    query: Optional[str] = None,
    category: Optional[str] = None,
    vendor_id: Optional[str] = None,
) -> List[LowInventoryRow]:
    """Products at or below their reorder point, lowest on-hand first."""

    positions = stock_positions(context)
    return low_inventory_report(
        list_products(context),
        positions,
        query=query,
        category=category,
        vendor_id=vendor_id,
    )
