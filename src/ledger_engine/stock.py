"""Derive stock positions from the append-only movement log.

Positions are never stored. Each call reduces the supplied movements from
scratch: ``IN`` adds to on-hand and ``OUT`` subtracts, an ``OUT`` for a pending
invoice also reserves the quantity, and an ``IN`` reversing an invoice releases
up to that much of the reservation. Available stock is on-hand less reserved,
never below zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from . import log
from .constants import StockDirection, StockReason
from .data_manager import ProductRow, StockMovementRow
from .filters import matches_keywords


ZERO = Decimal("0")


@dataclass(frozen=True)
class StockPosition:
    """Point-in-time quantities for one product."""

    product_id: str
    on_hand: Decimal
    reserved: Decimal
    available: Decimal


@dataclass(frozen=True)
class LowInventoryRow:
    """A product at or below its reorder point."""

    product: ProductRow
    on_hand: Decimal
    reorder_point: Decimal


def _reason(movement: StockMovementRow) -> str:
    return movement.reason.strip().lower()


def aggregate_stock_position(product_id: str, movements: Iterable[StockMovementRow]) -> StockPosition:
    """Reduce ``movements`` for ``product_id`` into a :class:`StockPosition`.

    Movements for other products are ignored, so callers may pass the whole
    window. Because the reduction is a sum, input order only matters for the
    reservation floor applied on reversals.

    Args:
        product_id (str): Product to report on.
        movements (Iterable[StockMovementRow]): Movement window.

    Returns:
        StockPosition: On-hand, reserved, and available quantities.
    """

    on_hand = ZERO
    reserved = ZERO
    for movement in movements:
        if movement.product_id != product_id:
            continue
        qty = abs(movement.qty)
        reason = _reason(movement)
        if movement.direction == StockDirection.IN:
            on_hand += qty
            if reason == StockReason.INVOICE_REVERSAL.value:
                reserved = max(ZERO, reserved - qty)
        else:
            on_hand -= qty
            if reason == StockReason.INVOICE_PENDING.value:
                reserved += qty
    return StockPosition(
        product_id=product_id,
        on_hand=on_hand,
        reserved=reserved,
        available=max(ZERO, on_hand - reserved),
    )


def calculate_stock_positions(movements: Iterable[StockMovementRow]) -> Dict[str, StockPosition]:
    """Compute a position for every product appearing in ``movements``.

    Products are keyed in order of first appearance.
    """

    by_product: Dict[str, List[StockMovementRow]] = {}
    for movement in movements:
        by_product.setdefault(movement.product_id, []).append(movement)
    return {
        product_id: aggregate_stock_position(product_id, product_movements)
        for product_id, product_movements in by_product.items()
    }


def scope_to_company(movements: Iterable[StockMovementRow], company_id: Optional[str]) -> List[StockMovementRow]:
    """Keep movements of ``company_id``; ``None`` keeps every movement."""

    if not company_id:
        return list(movements)
    return [movement for movement in movements if movement.company_id == company_id]


def select_movement_window(movements: Sequence[StockMovementRow], window: Optional[int]) -> List[StockMovementRow]:
    """Return the ``window`` most recent movements in chronological order.

    Recency is judged by ``created_at`` with ``movement_id`` breaking ties.
    A missing or zero ``window`` returns the full log unchanged.
    """

    if not window:
        return list(movements)
    ordered = sorted(movements, key=lambda movement: (movement.created_at, movement.movement_id))
    return ordered[-window:]


def truncated_products(movements: Sequence[StockMovementRow], selected: Sequence[StockMovementRow]) -> Set[str]:
    """Products that have movements outside the selected window."""

    kept = {id(movement) for movement in selected}
    return {movement.product_id for movement in movements if id(movement) not in kept}


def windowed_positions(movements: Sequence[StockMovementRow], window: Optional[int]) -> Dict[str, StockPosition]:
    """Apply the movement window, warn about truncated products, and aggregate."""

    selected = select_movement_window(movements, window)
    dropped = truncated_products(movements, selected) if window else set()
    for product_id in sorted(dropped):
        log.warning(
            "Stock position for product '%s' omits movements older than the %d-movement window",
            product_id,
            window,
        )
    return calculate_stock_positions(selected)


def low_inventory_report(
    products: Iterable[ProductRow],
    positions: Mapping[str, StockPosition],
    *,
    query: Optional[str] = None,
    category: Optional[str] = None,
    vendor_id: Optional[str] = None,
) -> List[LowInventoryRow]:
    """List products whose on-hand quantity is at or below the reorder point.

    Products without movements count as zero on hand. Results are sorted by
    on-hand ascending, then product id.
    """

    rows: List[LowInventoryRow] = []
    for product in products:
        position = positions.get(product.product_id)
        on_hand = position.on_hand if position is not None else ZERO
        if on_hand > product.reorder_point:
            continue
        if not matches_keywords(query, (product.name, product.product_code)):
            continue
        if category and (product.category or "").strip() != category.strip():
            continue
        if vendor_id and (product.vendor_id or "") != vendor_id:
            continue
        rows.append(LowInventoryRow(product=product, on_hand=on_hand, reorder_point=product.reorder_point))
    rows.sort(key=lambda row: (row.on_hand, row.product.product_id))
    return rows
