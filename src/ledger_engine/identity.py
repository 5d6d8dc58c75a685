"""Decide which account a transaction belongs to.

Documents normally carry the account's key. Some exports only carry a copy of
the account name, so a case-insensitive name comparison is used when the key
is absent. Name matches are ambiguous when two accounts share a name; every
such match is logged and handed to an optional audit callback so it can be
reviewed instead of passing silently.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, TypeVar

from . import log
from .data_manager import AccountRow


class MatchKind(str, Enum):
    """How a transaction was attributed to an account."""

    ID = "id"
    NAME = "name"
    NONE = "none"


@dataclass(frozen=True)
class FallbackMatch:
    """Audit record emitted whenever a name-only match is accepted."""

    account_id: str
    account_name: str
    transaction_id: str
    transaction_name: str


AuditHook = Callable[[FallbackMatch], None]

T = TypeVar("T")


def normalize_name(value: Optional[str]) -> str:
    """Trim and lower-case a name for comparison."""
    return str(value or "").strip().lower()


def resolve_match(
    account: AccountRow,
    *,
    transaction_account_id: Optional[str],
    transaction_account_name: Optional[str],
) -> MatchKind:
    """Classify how a transaction relates to ``account``.

    A transaction that carries an account key is decided by exact string
    equality of that key alone. Only a transaction without a key falls back to
    comparing its copied name with the account name.
    """

    key = str(transaction_account_id or "").strip()
    if key:
        return MatchKind.ID if key == str(account.account_id) else MatchKind.NONE
    account_name = normalize_name(account.name)
    if account_name and normalize_name(transaction_account_name) == account_name:
        return MatchKind.NAME
    return MatchKind.NONE


class IdentityResolver:
    """Attribute transactions to one account, recording every fallback match.

    Args:
        account (AccountRow): Account currently being reported on.
        audit_hook (Callable | None): Called with a :class:`FallbackMatch` each
            time a name-only match is accepted.
    """

    def __init__(self, account: AccountRow, *, audit_hook: Optional[AuditHook] = None) -> None:
        self.account = account
        self.audit_hook = audit_hook
        self.fallback_matches: List[FallbackMatch] = []

    def matches(
        self,
        *,
        transaction_id: str,
        transaction_account_id: Optional[str],
        transaction_account_name: Optional[str],
    ) -> bool:
        kind = resolve_match(
            self.account,
            transaction_account_id=transaction_account_id,
            transaction_account_name=transaction_account_name,
        )
        if kind is MatchKind.NAME:
            self._record_fallback(transaction_id, transaction_account_name or "")
        return kind is not MatchKind.NONE

    def select(
        self,
        items: Iterable[T],
        *,
        id_of: Callable[[T], str],
        account_id_of: Callable[[T], Optional[str]],
        account_name_of: Callable[[T], Optional[str]],
    ) -> List[T]:
        """Return the items attributed to the account, in input order."""

        return [
            item
            for item in items
            if self.matches(
                transaction_id=id_of(item),
                transaction_account_id=account_id_of(item),
                transaction_account_name=account_name_of(item),
            )
        ]

    def _record_fallback(self, transaction_id: str, transaction_name: str) -> None:
        match = FallbackMatch(
            account_id=self.account.account_id,
            account_name=self.account.name,
            transaction_id=transaction_id,
            transaction_name=transaction_name,
        )
        self.fallback_matches.append(match)
        log.warning(
            "Transaction '%s' matched account '%s' by name only ('%s')",
            transaction_id,
            self.account.account_id,
            transaction_name,
        )
        if self.audit_hook is not None:
            self.audit_hook(match)


def select_documents(resolver: IdentityResolver, documents: Iterable[T]) -> List[T]:
    """Select source documents (anything with ``document_id``/``account_id``/``account_name``)."""

    return resolver.select(
        documents,
        id_of=lambda doc: doc.document_id,  # type: ignore[attr-defined]
        account_id_of=lambda doc: doc.account_id,  # type: ignore[attr-defined]
        account_name_of=lambda doc: doc.account_name,  # type: ignore[attr-defined]
    )
