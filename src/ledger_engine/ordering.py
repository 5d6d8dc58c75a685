"""Deterministic total order over ledger entries.

Running balances depend on the order entries are applied in, so the order must
not depend on how the source arrays happened to be arranged. Keys, first
difference wins:

1. opening-balance entries first
2. ``date``
3. ``posted_at`` (empty before non-empty)
4. ``order_hint`` (missing is 0)
5. trailing number of ``reference`` (or ``id``), ``-1`` when there is none
6. type priority (invoice/bill, return, receipt/payment, then unknown)
7. ``reference`` (or ``id``) as text, then ``id``
"""

from __future__ import annotations

import re
from functools import cmp_to_key
from typing import Iterable, List, Optional

from .constants import TYPE_PRIORITY, UNKNOWN_TYPE_PRIORITY
from .normalizer import LedgerEntry


_TRAILING_NUMBER = re.compile(r"(\d+)\s*$")


def parse_ref_number(value: Optional[str]) -> int:
    """Return the run of digits ending ``value``, or ``-1`` if there is none.

    >>> parse_ref_number("INV-000045")
    45
    >>> parse_ref_number("NOREF")
    -1
    """

    match = _TRAILING_NUMBER.search(str(value or ""))
    return int(match.group(1)) if match else -1


def type_priority(entry_type: str) -> int:
    return TYPE_PRIORITY.get(entry_type, UNKNOWN_TYPE_PRIORITY)


def _sign(a, b) -> int:
    return (a > b) - (a < b)


def compare_entries(a: LedgerEntry, b: LedgerEntry) -> int:
    """Three-way comparison implementing the ledger order."""

    if a.is_opening != b.is_opening:
        return -1 if a.is_opening else 1
    if a.date != b.date:
        return _sign(a.date or "", b.date or "")
    a_posted = a.posted_at or ""
    b_posted = b.posted_at or ""
    if a_posted != b_posted:
        return _sign(a_posted, b_posted)
    a_hint = a.order_hint or 0
    b_hint = b.order_hint or 0
    if a_hint != b_hint:
        return _sign(a_hint, b_hint)
    a_ref = parse_ref_number(a.reference or a.id)
    b_ref = parse_ref_number(b.reference or b.id)
    if a_ref != b_ref:
        return _sign(a_ref, b_ref)
    a_type = type_priority(a.type)
    b_type = type_priority(b.type)
    if a_type != b_type:
        return _sign(a_type, b_type)
    a_label = a.reference or a.id
    b_label = b.reference or b.id
    if a_label != b_label:
        return _sign(a_label, b_label)
    # Entries sharing a reference still differ by id.
    return _sign(a.id, b.id)


entry_sort_key = cmp_to_key(compare_entries)


def sort_entries(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    """Return a new list of ``entries`` in ledger order; the input is untouched."""
    return sorted(entries, key=entry_sort_key)
