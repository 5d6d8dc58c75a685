"""Running balances, statement totals, and per-account balance summaries."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Sequence

from .constants import BalanceSide, EntryType
from .data_manager import AccountRow
from .normalizer import LedgerEntry


ZERO = Decimal("0")

_SALES_TYPES = {EntryType.INVOICE.value, EntryType.BILL.value}
_RECEIPT_TYPES = {EntryType.RECEIPT.value, EntryType.PAYMENT.value}


@dataclass(frozen=True)
class StatementTotals:
    """Totals printed under a statement."""

    debit: Decimal
    credit: Decimal
    net: Decimal
    closing_balance: Decimal


@dataclass(frozen=True)
class AccountBalance:
    """One row of the account balance report."""

    account_id: str
    name: str
    account_code: str
    opening: Decimal
    sales: Decimal
    returns: Decimal
    receipts: Decimal
    closing: Decimal
    side: BalanceSide


def running_balances(entries: Iterable[LedgerEntry]) -> Dict[str, Decimal]:
    """Map each entry id to the cumulative ``debit - credit`` after it.

    ``entries`` must already be in ledger order; this is a single forward
    pass and does no sorting of its own. The returned dict preserves that
    order.
    """

    running = ZERO
    balances: Dict[str, Decimal] = {}
    for entry in entries:
        running += entry.debit - entry.credit
        balances[entry.id] = running
    return balances


def summarize_entries(entries: Sequence[LedgerEntry], balances: Mapping[str, Decimal]) -> StatementTotals:
    """Total the presented ``entries``.

    The closing balance is the running balance recorded for the last presented
    entry, or zero when nothing is presented.
    """

    debit = sum((entry.debit for entry in entries), ZERO)
    credit = sum((entry.credit for entry in entries), ZERO)
    closing = balances.get(entries[-1].id, ZERO) if entries else ZERO
    return StatementTotals(debit=debit, credit=credit, net=debit - credit, closing_balance=closing)


def balance_side(amount: Decimal) -> BalanceSide:
    if amount > ZERO:
        return BalanceSide.DEBIT
    if amount < ZERO:
        return BalanceSide.CREDIT
    return BalanceSide.ZERO


def summarize_account(account: AccountRow, entries: Iterable[LedgerEntry]) -> AccountBalance:
    """Roll an account's entries up into opening, movements, and closing.

    The opening comes from the account record; opening entries in ``entries``
    are ignored so they are not counted twice. Invoice and bill entries count as
    sales, returns as returns, and receipt or payment entries (including amounts
    settled on the invoice itself) as receipts, each net of any postings on the
    reversed side.
    """

    sales = returns = receipts = ZERO
    for entry in entries:
        if entry.is_opening:
            continue
        if entry.type in _SALES_TYPES:
            sales += entry.debit - entry.credit
        elif entry.type == EntryType.RETURN.value:
            returns += entry.credit - entry.debit
        elif entry.type in _RECEIPT_TYPES:
            receipts += entry.credit - entry.debit
    opening = account.opening_balance
    closing = opening + sales - returns - receipts
    return AccountBalance(
        account_id=account.account_id,
        name=account.name,
        account_code=account.account_code,
        opening=opening,
        sales=sales,
        returns=returns,
        receipts=receipts,
        closing=closing,
        side=balance_side(closing),
    )


@dataclass(frozen=True)
class BalanceReportTotals:
    """Footer of the account balance report."""

    opening: Decimal
    sales: Decimal
    returns: Decimal
    receipts: Decimal
    closing: Decimal
    total_debit: Decimal
    total_credit: Decimal


def sort_balance_rows(rows: Iterable[AccountBalance]) -> List[AccountBalance]:
    """Order report rows by closing magnitude, largest first; ties keep input order."""
    return sorted(rows, key=lambda row: abs(row.closing), reverse=True)


def summarize_balance_rows(rows: Iterable[AccountBalance]) -> BalanceReportTotals:
    """Sum the report columns over ``rows``.

    ``total_debit`` adds up the positive closings and ``total_credit`` the
    magnitudes of the negative ones, so
    ``closing == total_debit - total_credit``.
    """

    opening = sales = returns = receipts = closing = ZERO
    total_debit = total_credit = ZERO
    for row in rows:
        opening += row.opening
        sales += row.sales
        returns += row.returns
        receipts += row.receipts
        closing += row.closing
        if row.closing > ZERO:
            total_debit += row.closing
        elif row.closing < ZERO:
            total_credit += abs(row.closing)
    return BalanceReportTotals(
        opening=opening,
        sales=sales,
        returns=returns,
        receipts=receipts,
        closing=closing,
        total_debit=total_debit,
        total_credit=total_credit,
    )
