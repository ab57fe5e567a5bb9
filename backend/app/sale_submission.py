"""
Sale creation: allocate every line to lots, then write header + lines.

The header and its lines are written by two separate remote writes. When the
line write fails after the header committed, the header is deleted again
(compensating action) so no sale is left without lines. Nothing is written
at all when any line fails allocation.

There is no lock between reading lots and inserting sale lines; two
concurrent submissions for the same lot can both pass the capacity check.
The stock trigger on `sale_items` is the only guard.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Protocol

import psycopg

from .errors import CompensationFailedError, InvalidInputError, PersistenceError
from .lot_allocation import LotCandidate, allocate_lots, fetch_lots_for_sale
from .logs import json_log
from .rpc import pg_message


@dataclass
class SaleLineDraft:
    product_id: str
    quantity: int
    unit_price: Decimal
    product_name: Optional[str] = None
    warehouse_id: Optional[str] = None


@dataclass
class SaleDraft:
    lines: List[SaleLineDraft]
    sale_date: date
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    client_id: Optional[str] = None
    sale_type: str = "sale"
    status: str = "pending"
    notes: Optional[str] = None
    sales_channel: Optional[str] = None
    store: Optional[str] = None
    total_cost: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    first_payment: Optional[Decimal] = None


@dataclass(frozen=True)
class AllocatedLine:
    product_id: str
    lot_id: str
    quantity: int
    unit_price: Decimal


LotLoader = Callable[[str, Optional[str]], List[LotCandidate]]


class SaleWriter(Protocol):
    def insert_sale(self, draft: SaleDraft) -> str: ...

    def insert_sale_lines(self, sale_id: str, lines: List[AllocatedLine]) -> None: ...

    def delete_sale(self, sale_id: str) -> None: ...


def allocate_sale_lines(draft: SaleDraft, load_lots: LotLoader) -> List[AllocatedLine]:
    out: List[AllocatedLine] = []
    for line in draft.lines:
        lots = load_lots(line.product_id, line.warehouse_id)
        allocations = allocate_lots(
            line.product_id,
            line.quantity,
            lots,
            warehouse_id=line.warehouse_id,
            product_name=line.product_name,
        )
        for a in allocations:
            out.append(
                AllocatedLine(
                    product_id=line.product_id,
                    lot_id=a.lot_id,
                    quantity=a.quantity,
                    unit_price=Decimal(str(line.unit_price)),
                )
            )
    return out


def submit_sale(draft: SaleDraft, load_lots: LotLoader, writer: SaleWriter) -> str:
    if not draft.lines:
        raise InvalidInputError("at least one line is required")

    allocated = allocate_sale_lines(draft, load_lots)
    for a in allocated:
        json_log("info", "sale.lot_allocated", product_id=a.product_id, lot_id=a.lot_id, quantity=a.quantity)

    sale_id = writer.insert_sale(draft)
    try:
        writer.insert_sale_lines(sale_id, allocated)
    except PersistenceError as exc:
        json_log("warning", "sale.lines_failed", sale_id=sale_id, error=exc.message)
        try:
            writer.delete_sale(sale_id)
        except PersistenceError as comp_exc:
            # The compensating error is what surfaces; the line failure is only kept alongside it.
            json_log("error", "sale.compensation_failed", sale_id=sale_id, error=comp_exc.message, original_error=exc.message)
            raise CompensationFailedError(comp_exc.message, sale_id=sale_id, original_error=exc.message) from comp_exc
        json_log("info", "sale.compensated", sale_id=sale_id)
        raise

    json_log("info", "sale.created", sale_id=sale_id, lines=len(allocated), total=draft.total)
    return sale_id


def db_lot_loader(conn_factory, user_id: Optional[str] = None, set_context=None) -> LotLoader:
    def _load(product_id: str, warehouse_id: Optional[str]) -> List[LotCandidate]:
        with conn_factory() as conn:
            if set_context and user_id:
                set_context(conn, user_id)
            with conn.cursor() as cur:
                return fetch_lots_for_sale(cur, product_id, warehouse_id)

    return _load


@dataclass
class PgSaleWriter:
    """
    Writes a sale through the database, one transaction per call.

    Each call commits on its own, like the remote inserts it stands for, so a
    header can exist without lines until `delete_sale` compensates.
    """

    conn_factory: Callable
    user_id: Optional[str] = None
    set_context: Optional[Callable] = None

    def _conn(self):
        return self.conn_factory()

    def _prepare(self, conn):
        if self.set_context and self.user_id:
            self.set_context(conn, self.user_id)

    def insert_sale(self, draft: SaleDraft) -> str:
        try:
            with self._conn() as conn:
                self._prepare(conn)
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO sales
                          (id, client_id, sale_date, sale_type, status, subtotal, tax, total,
                           total_cost, exchange_rate, first_payment, notes, sales_channel, store)
                        VALUES
                          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING id
                        """,
                        (
                            draft.client_id,
                            draft.sale_date,
                            draft.sale_type,
                            draft.status,
                            draft.subtotal,
                            draft.tax,
                            draft.total,
                            draft.total_cost,
                            draft.exchange_rate,
                            draft.first_payment,
                            draft.notes,
                            draft.sales_channel,
                            draft.store,
                        ),
                    )
                    return str(cur.fetchone()["id"])
        except psycopg.Error as exc:
            raise PersistenceError(pg_message(exc)) from exc

    def insert_sale_lines(self, sale_id: str, lines: List[AllocatedLine]) -> None:
        try:
            with self._conn() as conn:
                self._prepare(conn)
                with conn.cursor() as cur:
                    # The stock trigger on sale_items decrements each lot.
                    cur.executemany(
                        """
                        INSERT INTO sale_items (id, sale_id, product_id, lot_id, quantity, unit_price)
                        VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                        """,
                        [(sale_id, l.product_id, l.lot_id, l.quantity, l.unit_price) for l in lines],
                    )
        except psycopg.Error as exc:
            raise PersistenceError(pg_message(exc)) from exc

    def delete_sale(self, sale_id: str) -> None:
        try:
            with self._conn() as conn:
                self._prepare(conn)
                with conn.cursor() as cur:
                    cur.execute("DELETE FROM sales WHERE id = %s", (sale_id,))
        except psycopg.Error as exc:
            raise PersistenceError(pg_message(exc)) from exc
