"""Query and filter helpers applied to source records and derived results.

Dates are compared as ISO ``yyyy-mm-dd`` strings and both range bounds are
inclusive and optional. Free-text search splits the query on whitespace and
requires every token to appear, case-insensitively, somewhere in the record's
searchable fields.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, TypeVar

from .balances import AccountBalance
from .data_manager import AccountRow, ProductRow, StockMovementRow
from .normalizer import LedgerEntry


ALL = "all"
ALL_TYPES = "All Types"

_DMY = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}$")

T = TypeVar("T")


def parse_dmy_to_iso(value: Optional[str]) -> Optional[str]:
    """Convert ``DD/MM/YYYY`` into ``YYYY-MM-DD``; ``None`` if not a real date."""

    match = _DMY.match(str(value or "").strip())
    if not match:
        return None
    day, month, year = match.groups()
    iso = f"{year}-{month}-{day}"
    try:
        datetime.strptime(iso, "%Y-%m-%d")
    except ValueError:
        return None
    return iso


def coerce_date_bound(value: Optional[str]) -> Optional[str]:
    """Accept an ISO or ``DD/MM/YYYY`` date bound and return it as ISO.

    Blank values mean "unbounded" and return ``None``.

    Raises:
        ValueError: If ``value`` is neither a valid ISO nor DMY calendar date.
    """

    text = str(value or "").strip()
    if not text:
        return None
    if _ISO.match(text):
        datetime.strptime(text, "%Y-%m-%d")
        return text
    iso = parse_dmy_to_iso(text)
    if iso is None:
        raise ValueError(f"Invalid date '{text}'; expected YYYY-MM-DD or DD/MM/YYYY")
    return iso


def in_date_range(value: Optional[str], start: Optional[str] = None, end: Optional[str] = None) -> bool:
    """Return ``True`` when the date part of ``value`` lies within the bounds.

    With no bounds everything matches. When a bound is set, a blank date never
    matches.
    """

    if start is None and end is None:
        return True
    day = str(value or "")[:10]
    if not day:
        return False
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def matches_type(entry_type: str, type_filter: Optional[str]) -> bool:
    if not type_filter or type_filter.strip().lower() in (ALL, ALL_TYPES.lower()):
        return True
    return entry_type.lower() == type_filter.strip().lower()


def tokenize(query: Optional[str]) -> List[str]:
    return str(query or "").lower().split()


def matches_keywords(query: Optional[str], fields: Iterable[Optional[object]]) -> bool:
    """AND-of-keywords search over the concatenation of ``fields``."""

    tokens = tokenize(query)
    if not tokens:
        return True
    haystack = " ".join(str(field) for field in fields if field).lower()
    return all(token in haystack for token in tokens)


def filter_by_id(items: Iterable[T], value: Optional[str], *, id_of: Callable[[T], Optional[str]]) -> List[T]:
    """Keep items whose id equals ``value`` exactly; no ``value`` keeps all."""

    if value is None or value == "":
        return list(items)
    return [item for item in items if str(id_of(item) or "") == str(value)]


def filter_entries(
    entries: Iterable[LedgerEntry],
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    entry_type: Optional[str] = None,
    query: Optional[str] = None,
) -> List[LedgerEntry]:
    """Narrow ordered ledger entries for presentation, preserving order."""

    return [
        entry
        for entry in entries
        if in_date_range(entry.date, start, end)
        and matches_type(entry.type, entry_type)
        and matches_keywords(
            query,
            (entry.description, entry.reference, entry.type, entry.detail_narration, entry.view_id),
        )
    ]


def search_accounts(accounts: Iterable[AccountRow], query: Optional[str]) -> List[AccountRow]:
    """Account picker search over name, code, and id."""

    return [
        account
        for account in accounts
        if matches_keywords(query, (account.name, account.account_code, account.account_id))
    ]


def filter_movements(
    movements: Iterable[StockMovementRow],
    *,
    products: Mapping[str, ProductRow],
    query: Optional[str] = None,
    direction: Optional[str] = None,
) -> List[StockMovementRow]:
    """Search the stock ledger.

    The searchable text covers the product name and code (looked up in
    ``products``), the product id, reason, direction, source, and source
    reference. ``direction`` is ``all``, ``in`` or ``out``.
    """

    wanted = str(direction or ALL).strip().lower()
    selected: List[StockMovementRow] = []
    for movement in movements:
        if wanted != ALL and movement.direction.value.lower() != wanted:
            continue
        product = products.get(movement.product_id)
        fields = (
            product.name if product else None,
            product.product_code if product else None,
            movement.product_id,
            movement.reason,
            movement.direction.value,
            movement.source,
            movement.source_ref,
        )
        if matches_keywords(query, fields):
            selected.append(movement)
    return selected


def filter_balances(
    rows: Sequence[AccountBalance],
    *,
    query: Optional[str] = None,
    side: Optional[str] = None,
) -> List[AccountBalance]:
    """Filter balance report rows by text (name, code, id) and closing side."""

    wanted_side = str(side or "All").strip()
    return [
        row
        for row in rows
        if matches_keywords(query, (row.name, row.account_code, row.account_id))
        and (wanted_side.lower() == ALL or row.side.value.lower() == wanted_side.lower())
    ]
