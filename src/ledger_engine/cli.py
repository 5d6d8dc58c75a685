"""Command-line entry points for the ledger engine.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into reconciliation-layer calls, and printing the
results as plain text. Every command is read-only.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .balances import summarize_balance_rows
from .constants import AccountKind, BalanceSide, EntryType
from .filters import coerce_date_bound
from .normalizer import format_amount


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Ledger statements and stock positions from the ERP source workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    ledger_specs = register_ledger_commands(subparsers)
    stock_specs = register_stock_commands(subparsers)
    return build_command_table([*ledger_specs.values(), *stock_specs.values()])


def register_ledger_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare account ledger commands."""
    specs = {
        "statement": register_statement_command(subparsers),
        "balances": register_balances_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_stock_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare stock reporting commands."""
    specs = {
        "stock": register_stock_command(subparsers),
        "stock-ledger": register_stock_ledger_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_date_range(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from", dest="start", default=None, help="Start date, YYYY-MM-DD or DD/MM/YYYY.")
    parser.add_argument("--to", dest="end", default=None, help="End date, YYYY-MM-DD or DD/MM/YYYY.")


def _add_kind(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--kind",
        choices=[member.value for member in AccountKind],
        default=AccountKind.CUSTOMER.value,
    )


def register_statement_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``statement``."""
    name = "statement"
    help_text = "Print the running-balance statement for one account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--account-id", required=True)
        parser.add_argument("--kind", choices=[member.value for member in AccountKind], default=None)
        _add_date_range(parser)
        parser.add_argument("--type", dest="entry_type", choices=[member.value for member in EntryType], default=None)
        parser.add_argument("--search", default=None)
        parser.add_argument("--include-void", action="store_true")
        parser.add_argument("--include-deleted", action="store_true")
        parser.add_argument("--detailed", action="store_true", help="Show line-item narration under each entry.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_statement)


def register_balances_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``balances``."""
    name = "balances"
    help_text = "Print opening, movements, and closing balance per account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind(parser)
        _add_date_range(parser)
        parser.add_argument("--side", choices=["All", *[member.value for member in BalanceSide]], default="All")
        parser.add_argument("--search", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_balances)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Print on-hand, reserved, and available stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock)


def register_stock_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock-ledger``."""
    name = "stock-ledger"
    help_text = "Search the stock movement log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--direction", choices=["all", "in", "out"], default="all")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_ledger)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "List products at or below their reorder point."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--vendor-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_statement(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into ``account_statement`` keyword arguments."""
    return {
        "start": coerce_date_bound(args.start),
        "end": coerce_date_bound(args.end),
        "entry_type": args.entry_type,
        "query": args.search,
        "include_void": bool(args.include_void),
        "include_deleted": bool(args.include_deleted),
    }


def translate_balances(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into ``account_balance_report`` keyword arguments."""
    return {
        "kind": args.kind,
        "start": coerce_date_bound(args.start),
        "end": coerce_date_bound(args.end),
        "query": args.search,
        "side": args.side,
    }


def _money(value: Decimal) -> str:
    return f"{value:,.2f}"


def _emit(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def render_statement(statement: core_logic.AccountStatement, *, detailed: bool = False) -> list[str]:
    """Render a statement as fixed-width text lines."""
    header = f"{'Date':<10}  {'Reference':<14}  {'Type':<8}  {'Description':<32}  {'Debit':>12}  {'Credit':>12}  {'Balance':>12}"
    lines = [f"Statement for {statement.account.name} ({statement.account.account_id})", header, "-" * len(header)]
    for entry in statement.entries:
        lines.append(
            f"{entry.date:<10}  {entry.reference[:14]:<14}  {entry.type:<8}  {entry.description[:32]:<32}  "
            f"{_money(entry.debit):>12}  {_money(entry.credit):>12}  {_money(statement.balances[entry.id]):>12}"
        )
        if detailed and entry.detail_narration:
            lines.extend(f"{'':<10}  {narration}" for narration in entry.detail_narration.splitlines())
    totals = statement.totals
    lines.append("-" * len(header))
    lines.append(f"Total debit {_money(totals.debit)}  Total credit {_money(totals.credit)}  Closing balance {_money(totals.closing_balance)}")
    return lines


def run_statement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Build and print the statement for one account."""
    account = core_logic.get_account(context, args.account_id)
    if args.kind is not None and account.kind != args.kind:
        raise core_logic.LedgerEngineError(f"Account '{account.account_id}' is a {account.kind}, not a {args.kind}")
    statement = core_logic.account_statement(context, args.account_id, **translate_statement(args))
    _emit(render_statement(statement, detailed=args.detailed))
    return 0


def run_balances(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the account balance report."""
    rows = core_logic.account_balance_report(context, **translate_balances(args))
    lines = [f"{'Account':<12}  {'Name':<24}  {'Opening':>12}  {'Sales':>12}  {'Returns':>12}  {'Receipts':>12}  {'Closing':>12}  Side"]
    for row in rows:
        lines.append(
            f"{row.account_id:<12}  {row.name[:24]:<24}  {_money(row.opening):>12}  {_money(row.sales):>12}  "
            f"{_money(row.returns):>12}  {_money(row.receipts):>12}  {_money(row.closing):>12}  {row.side.value}"
        )
    totals = summarize_balance_rows(rows)
    lines.append("-" * len(lines[0]))
    lines.append(
        f"{'Total':<12}  {'':<24}  {_money(totals.opening):>12}  {_money(totals.sales):>12}  "
        f"{_money(totals.returns):>12}  {_money(totals.receipts):>12}  {_money(totals.closing):>12}"
    )
    lines.append(f"Total debit {_money(totals.total_debit)}  Total credit {_money(totals.total_credit)}")
    _emit(lines)
    return 0


def run_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print stock positions for all products or one product."""
    positions = core_logic.stock_positions(context, product_id=args.product_id)
    lines = [f"{'Product':<14}  {'On hand':>10}  {'Reserved':>10}  {'Available':>10}"]
    for position in positions.values():
        lines.append(
            f"{position.product_id:<14}  {format_amount(position.on_hand):>10}  "
            f"{format_amount(position.reserved):>10}  {format_amount(position.available):>10}"
        )
    _emit(lines)
    return 0


def run_stock_ledger(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print stock movements matching the search."""
    movements = core_logic.stock_ledger(context, query=args.search, direction=args.direction)
    lines = [f"{'When':<20}  {'Product':<14}  {'Dir':<3}  {'Qty':>8}  {'Reason':<18}  Ref"]
    for movement in movements:
        lines.append(
            f"{movement.created_at[:20]:<20}  {movement.product_id:<14}  {movement.direction.value:<3}  "
            f"{format_amount(movement.qty):>8}  {movement.reason[:18]:<18}  {movement.source_ref}"
        )
    _emit(lines)
    return 0


def run_low_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print products at or below their reorder point."""
    rows = core_logic.low_inventory(context, query=args.search, category=args.category, vendor_id=args.vendor_id)
    lines = [f"{'Product':<14}  {'Name':<28}  {'On hand':>10}  {'Reorder':>10}"]
    for row in rows:
        lines.append(
            f"{row.product.product_id:<14}  {row.product.name[:28]:<28}  "
            f"{format_amount(row.on_hand):>10}  {format_amount(row.reorder_point):>10}"
        )
    _emit(lines)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.LedgerEngineError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
