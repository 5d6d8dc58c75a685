"""Unit tests verifying the reconciliation layer with a mocked data access layer."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from unittest.mock import Mock

import pytest

from ledger_engine import constants, core_logic, data_manager
from ledger_engine.constants import StockDirection


ACCOUNTS = [
    data_manager.AccountRow("C1", "customer", "Ali Traders", "A-01", Decimal("500")),
    data_manager.AccountRow("C2", "customer", "Bina Stores", "B-01", Decimal("0")),
    data_manager.AccountRow("V1", "vendor", "Rice Mills", "V-01", Decimal("-200")),
]

DOCUMENTS = [
    data_manager.InvoiceDocument(
        "INV-1", "customer", "C1", "Ali Traders", "2024-01-05", "INV-1", "", Decimal("1000"),
        amount_received=Decimal("400"),
    ),
    data_manager.ReceiptDocument("REC-2", "customer", None, "ali traders", "2024-01-10", "REC-2", "", Decimal("600")),
    data_manager.ReturnDocument("RET-3", "customer", "C1", "Ali Traders", "2024-02-02", "RET-3", "void", Decimal("50")),
    data_manager.InvoiceDocument("INV-4", "customer", "C2", "Bina Stores", "2024-01-06", "INV-4", "", Decimal("70")),
    data_manager.InvoiceDocument("BILL-5", "vendor", "V1", "Rice Mills", "2024-01-07", "BILL-5", "", Decimal("300")),
]

MOVEMENTS = [
    data_manager.StockMovementRow("M1", "CO-1", "P1", Decimal("10"), StockDirection.IN, "manual_adjustment"),
    data_manager.StockMovementRow("M2", "CO-1", "P1", Decimal("3"), StockDirection.OUT, "invoice_pending"),
    data_manager.StockMovementRow("M3", "CO-2", "P1", Decimal("8"), StockDirection.IN, "manual_adjustment"),
    data_manager.StockMovementRow("M4", "CO-1", "P2", Decimal("1"), StockDirection.IN, "manual_adjustment"),
]

PRODUCTS = [
    data_manager.ProductRow("P1", "Basmati Rice", "RICE-01", Decimal("5")),
    data_manager.ProductRow("P2", "Sea Salt", "SALT-01", Decimal("3")),
]


@pytest.fixture
def sources(monkeypatch):
    """Patch the DAL iterators with in-memory records and expose the mocks."""

    mocks = {
        "iter_accounts": Mock(return_value=ACCOUNTS),
        "iter_documents": Mock(return_value=DOCUMENTS),
        "iter_stock_movements": Mock(return_value=MOVEMENTS),
        "iter_products": Mock(return_value=PRODUCTS),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(data_manager, name, mock)
    return mocks


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings, workbook, and session."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "source.xlsx",
        company_name="Demo",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        company_id="CO-1",
        pinned_reports=("statement",),
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    assert context.session == core_logic.SessionContext("CO-1", ("statement",))
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_settings = replace(context.settings, schema_version="0.9")
    bad_context = core_logic.RuntimeContext(settings=bad_settings, workbook=context.workbook)
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_refresh_context_reopens_workbook_and_drops_cache(monkeypatch, context, sources):
    refreshed_workbook = Mock(name="refreshed")
    refresh = Mock(return_value=refreshed_workbook)
    monkeypatch.setattr(data_manager, "refresh_workbook", refresh)
    core_logic.list_accounts(context)

    refreshed = core_logic.refresh_context(context)

    refresh.assert_called_once_with(context.settings.data_file)
    assert refreshed.workbook is refreshed_workbook
    assert refreshed.session is context.session
    assert refreshed._cache == {}


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_start_session_scopes_stock_to_company(context, sources):
    scoped = core_logic.start_session(context, company_id="CO-2", pinned_reports=["low-stock"])

    assert [m.movement_id for m in core_logic.list_stock_movements(scoped)] == ["M3"]
    assert core_logic.list_pinned_reports(scoped) == ["low-stock"]
    assert len(core_logic.list_stock_movements(context)) == 4


def test_end_session_clears_selections_and_cache(context, sources):
    scoped = core_logic.start_session(context, company_id="CO-1", pinned_reports=["statement"])
    core_logic.stock_positions(scoped)

    ended = core_logic.end_session(scoped)

    assert ended.session == core_logic.SessionContext()
    assert ended._cache == {}
    assert scoped._cache != {}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def test_list_accounts_filters_by_kind_and_caches_rows(context, sources):
    assert [a.account_id for a in core_logic.list_accounts(context, kind="vendor")] == ["V1"]
    assert len(core_logic.list_accounts(context)) == 3
    sources["iter_accounts"].assert_called_once_with(context.workbook)


def test_find_accounts_searches_name_and_code(context, sources):
    assert [a.account_id for a in core_logic.find_accounts(context, "bina")] == ["C2"]
    assert core_logic.find_accounts(context, "bina", kind="vendor") == []


def test_get_account_raises_for_unknown_id(context, sources):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_account(context, "NOPE")


def test_get_product_raises_for_unknown_id(context, sources):
    assert core_logic.get_product(context, "P2").name == "Sea Salt"
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_product(context, "P9")


def test_missing_reference_is_a_ledger_engine_error():
    assert issubclass(core_logic.MissingReferenceError, core_logic.LedgerEngineError)


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


def test_account_statement_builds_running_balances(context, sources):
    statement = core_logic.account_statement(context, "C1")

    assert [entry.id for entry in statement.entries] == ["open-C1", "inv-INV-1", "rcp-INV-1", "rec-REC-2"]
    assert [statement.balances[entry.id] for entry in statement.entries] == [
        Decimal("500"),
        Decimal("1500"),
        Decimal("1100"),
        Decimal("500"),
    ]
    assert statement.totals.closing_balance == Decimal("500")
    assert [match.transaction_id for match in statement.fallback_matches] == ["REC-2"]


def test_account_statement_can_include_void_documents(context, sources):
    statement = core_logic.account_statement(context, "C1", include_void=True)

    assert statement.entries[-1].id == "ret-RET-3"
    assert statement.totals.closing_balance == Decimal("450")


def test_account_statement_filters_keep_full_ledger_balances(context, sources):
    """Filtering narrows the rows but not the cumulative balance they show."""

    statement = core_logic.account_statement(context, "C1", start="2024-01-10")

    assert [entry.id for entry in statement.entries] == ["rec-REC-2"]
    assert statement.balances["rec-REC-2"] == Decimal("500")
    assert statement.totals.credit == Decimal("600")
    assert statement.totals.debit == Decimal("0")


def test_account_statement_is_memoized_by_content(context, sources):
    """Equal inputs return the same object; differing filters recompute."""

    first = core_logic.account_statement(context, "C1")
    second = core_logic.account_statement(context, "C1")
    filtered = core_logic.account_statement(context, "C1", entry_type="Receipt")

    assert first is second
    assert filtered is not first
    sources["iter_documents"].assert_called_once_with(context.workbook)


def test_account_statement_calls_audit_hook_for_name_matches(context, sources):
    audited = []
    core_logic.account_statement(context, "C1", audit_hook=audited.append)
    assert [match.transaction_name for match in audited] == ["ali traders"]


def test_vendor_statement_ignores_customer_documents(context, sources):
    statement = core_logic.account_statement(context, "V1")

    assert [entry.id for entry in statement.entries] == ["open-V1", "bill-BILL-5"]
    assert statement.totals.closing_balance == Decimal("100")


def test_memoize_reuses_computed_value(context):
    compute = Mock(return_value=42)

    assert core_logic.memoize(context, "bucket", ("k",), compute) == 42
    assert core_logic.memoize(context, "bucket", ("k",), compute) == 42
    compute.assert_called_once_with()


def test_memoize_evicts_least_recently_used_entry(context):
    compute = Mock(return_value="value")

    core_logic.memoize(context, "bucket", "a", compute, max_entries=2)
    core_logic.memoize(context, "bucket", "b", compute, max_entries=2)
    core_logic.memoize(context, "bucket", "a", compute, max_entries=2)
    core_logic.memoize(context, "bucket", "c", compute, max_entries=2)

    assert list(context._cache["bucket"]) == ["a", "c"]
    assert compute.call_count == 3

    core_logic.memoize(context, "bucket", "b", compute, max_entries=2)
    assert compute.call_count == 4
    assert list(context._cache["bucket"]) == ["c", "b"]


def test_result_buckets_are_bounded_by_default(context):
    limit = constants.RESULT_CACHE_LIMIT
    for index in range(limit + 5):
        core_logic.memoize(context, "statements", index, Mock(return_value=index))

    assert list(context._cache["statements"]) == list(range(5, limit + 5))


# ---------------------------------------------------------------------------
# Balance report
# ---------------------------------------------------------------------------


def test_account_balance_report_summarizes_each_account(context, sources):
    rows = core_logic.account_balance_report(context)

    by_id = {row.account_id: row for row in rows}
    assert set(by_id) == {"C1", "C2"}
    assert by_id["C1"].opening == Decimal("500")
    assert by_id["C1"].sales == Decimal("1000")
    assert by_id["C1"].receipts == Decimal("1000")
    assert by_id["C1"].returns == Decimal("0")
    assert by_id["C1"].closing == Decimal("500")
    assert by_id["C2"].closing == Decimal("70")


def test_account_balance_report_orders_rows_by_closing_magnitude(context, sources):
    sources["iter_accounts"].return_value = [ACCOUNTS[1], ACCOUNTS[0], ACCOUNTS[2]]

    rows = core_logic.account_balance_report(context)

    assert [row.account_id for row in rows] == ["C1", "C2"]
    assert [row.closing for row in rows] == [Decimal("500"), Decimal("70")]


def test_account_balance_report_respects_date_range_and_side(context, sources):
    rows = core_logic.account_balance_report(context, start="2024-01-06", end="2024-01-31")

    by_id = {row.account_id: row for row in rows}
    assert by_id["C1"].sales == Decimal("0")
    assert by_id["C1"].receipts == Decimal("600")
    assert by_id["C1"].closing == Decimal("-100")
    assert by_id["C1"].side is constants.BalanceSide.CREDIT
    assert by_id["C2"].side is constants.BalanceSide.DEBIT

    debit_rows = core_logic.account_balance_report(context, start="2024-01-06", end="2024-01-31", side="DR")
    assert [row.account_id for row in debit_rows] == ["C2"]


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


def test_stock_positions_for_session_company(context, sources):
    scoped = core_logic.start_session(context, company_id="CO-1")

    positions = core_logic.stock_positions(scoped)

    assert positions["P1"].on_hand == Decimal("7")
    assert positions["P1"].reserved == Decimal("3")
    assert positions["P1"].available == Decimal("4")


def test_stock_positions_for_unknown_product_are_zero(context, sources):
    positions = core_logic.stock_positions(context, product_id="P9")
    assert positions == {"P9": core_logic.StockPosition("P9", Decimal("0"), Decimal("0"), Decimal("0"))}


def test_stock_ledger_searches_by_product_name(context, sources):
    movements = core_logic.stock_ledger(context, query="salt")
    assert [m.movement_id for m in movements] == ["M4"]
    assert [m.movement_id for m in core_logic.stock_ledger(context, direction="out")] == ["M2"]


def test_low_inventory_lists_products_below_reorder_point(context, sources):
    scoped = core_logic.start_session(context, company_id="CO-1")

    rows = core_logic.low_inventory(scoped)

    assert [(row.product.product_id, row.on_hand) for row in rows] == [("P2", Decimal("1"))]
