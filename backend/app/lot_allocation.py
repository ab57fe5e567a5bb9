"""
Lot allocation for outbound sales.

Requested units of a product are spread over its inventory lots in FEFO order
(earliest expiry first, lots without expiry last). Remaining quantities on
lots may carry fractional drift from upstream rounding, so each lot only
offers its whole units: `floor(current_remaining)`. Lots with less than one
whole unit ("dust") are never allocated from.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from .errors import AllocationIntegrityError, InsufficientStockError, InvalidInputError


@dataclass(frozen=True)
class LotCandidate:
    id: str
    product_id: str
    warehouse_id: Optional[str]
    current_remaining: Decimal
    expiry_date: Optional[date] = None
    lot_code: Optional[str] = None


@dataclass(frozen=True)
class LotAllocation:
    lot_id: str
    quantity: int


def usable_quantity(current_remaining) -> int:
    return int(math.floor(Decimal(str(current_remaining or 0))))


def _fefo_key(lot: LotCandidate):
    # Nulls last, then lot id so equal expiries allocate deterministically.
    return (lot.expiry_date is None, lot.expiry_date or date.max, str(lot.id))


def _requested_units(requested_qty) -> int:
    try:
        q = Decimal(str(requested_qty))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError("requested quantity must be a whole number")
    if not q.is_finite() or q != q.to_integral_value():
        raise InvalidInputError("requested quantity must be a whole number")
    if q < 0:
        raise InvalidInputError("requested quantity must be >= 0")
    return int(q)


def allocate_lots(
    product_id: str,
    requested_qty,
    lots: Iterable[LotCandidate],
    *,
    warehouse_id: Optional[str] = None,
    product_name: Optional[str] = None,
) -> List[LotAllocation]:
    """
    Returns (lot_id, quantity) allocations that sum exactly to `requested_qty`.

    Raises InsufficientStockError when the whole-unit total of usable lots is
    below the request; the reported `available` is that floored total, never
    the raw fractional sum. Pure: performs no I/O.
    """
    requested = _requested_units(requested_qty)
    if requested == 0:
        return []

    lots = list(lots)
    usable = []
    for lot in lots:
        if warehouse_id and str(lot.warehouse_id or "") != str(warehouse_id):
            continue
        units = usable_quantity(lot.current_remaining)
        if units >= 1:
            usable.append((lot, units))

    available = sum(units for _, units in usable)
    if available < requested:
        raw = None
        if not usable:
            raw_total = sum((Decimal(str(l.current_remaining or 0)) for l in lots), Decimal("0"))
            if raw_total > 0:
                raw = f"{raw_total:.2f}"
        raise InsufficientStockError(
            product_id,
            requested=requested,
            available=available,
            product_name=product_name,
            raw_available=raw,
            warehouse_id=warehouse_id,
        )

    usable.sort(key=lambda pair: _fefo_key(pair[0]))

    remaining = requested
    out: List[LotAllocation] = []
    for lot, units in usable:
        if remaining <= 0:
            break
        take = min(remaining, units)
        out.append(LotAllocation(lot_id=lot.id, quantity=take))
        remaining -= take

    if remaining != 0:
        raise AllocationIntegrityError(product_id, requested=requested, unallocated=remaining, product_name=product_name)
    return out


def fetch_lots_for_sale(cur, product_id: str, warehouse_id: Optional[str] = None) -> List[LotCandidate]:
    """
    Candidate lots for a product (optionally one warehouse), soonest expiry first.
    Fractional remainders are returned as-is; `allocate_lots` floors them.
    """
    wh_filter = ""
    params: list = [product_id]
    if warehouse_id:
        wh_filter = " AND l.warehouse_id = %s"
        params.append(warehouse_id)
    cur.execute(
        f"""
        SELECT l.id, l.product_id, l.warehouse_id, l.lot_code, l.current_quantity, l.expiry_date
        FROM lots l
        WHERE l.product_id = %s
          {wh_filter}
          AND l.current_quantity > 0
        ORDER BY l.expiry_date ASC NULLS LAST, l.id
        """,
        tuple(params),
    )
    return [
        LotCandidate(
            id=str(r["id"]),
            product_id=str(r["product_id"]),
            warehouse_id=str(r["warehouse_id"]) if r.get("warehouse_id") else None,
            lot_code=r.get("lot_code"),
            current_remaining=Decimal(str(r["current_quantity"] or 0)),
            expiry_date=r.get("expiry_date"),
        )
        for r in cur.fetchall()
    ]
