from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from datetime import date

from ..config import settings
from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..pricing_rules import line_subtotal, price_for_buyer, sale_totals
from ..rpc import call_rpc
from ..sale_submission import PgSaleWriter, SaleDraft, SaleLineDraft, db_lot_loader, submit_sale
from ..validation import SalesChannel, SaleStatus, SaleType

router = APIRouter(prefix="/sales", tags=["sales"])

WALK_IN_CLIENT = "Consumidor Final"


class SaleLineIn(BaseModel):
    product_id: str
    warehouse_id: str
    quantity: int
    # Omitted: priced from the client's price list.
    unit_price: Optional[Decimal] = None


class SaleIn(BaseModel):
    client_id: Optional[str] = None
    sale_date: Optional[date] = None
    sale_type: SaleType = "sale"
    sales_channel: SalesChannel = "store"
    store: Optional[str] = None
    apply_tax: bool = False
    notes: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    first_payment: Optional[Decimal] = None
    lines: List[SaleLineIn]


class SaleStatusIn(BaseModel):
    status: SaleStatus


def group_sale_items(sales: List[dict], items: List[dict]) -> List[dict]:
    by_sale: dict = {}
    for it in items:
        by_sale.setdefault(str(it["sale_id"]), []).append(
            {
                "product_id": it.get("product_id"),
                "product_name": it.get("product_name") or "N/A",
                "lot_id": it.get("lot_id"),
                "quantity": it["quantity"],
                "unit_price": it["unit_price"],
            }
        )
    out = []
    for s in sales:
        row = dict(s)
        row["client_name"] = row.get("client_name") or WALK_IN_CLIENT
        row["items"] = by_sale.get(str(s["id"]), [])
        out.append(row)
    return out


def _fetch_sales(cur, sale_id: Optional[str] = None) -> List[dict]:
    sql = """
        SELECT s.id, s.client_id, c.name AS client_name, s.sale_date, s.sale_type, s.status,
               s.subtotal, s.tax, s.total, s.notes, s.sales_channel, s.store, s.created_at
        FROM sales s
        LEFT JOIN clients c ON c.id = s.client_id
    """
    params: list = []
    if sale_id:
        sql += " WHERE s.id = %s"
        params.append(sale_id)
    sql += " ORDER BY s.sale_date DESC, s.created_at DESC"
    cur.execute(sql, params)
    sales = cur.fetchall()
    if not sales:
        return []
    cur.execute(
        """
        SELECT si.sale_id, si.product_id, p.name AS product_name, si.lot_id, si.quantity, si.unit_price
        FROM sale_items si
        LEFT JOIN products p ON p.id = si.product_id
        WHERE si.sale_id = ANY(%s)
        ORDER BY si.sale_id, p.name
        """,
        ([s["id"] for s in sales],),
    )
    return group_sale_items(sales, cur.fetchall())


@router.get("")
def list_sales(user=Depends(require_view("sales"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            return {"sales": _fetch_sales(cur)}


@router.get("/{sale_id}")
def get_sale(sale_id: str, user=Depends(require_view("sales"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            rows = _fetch_sales(cur, sale_id)
    if not rows:
        raise HTTPException(status_code=404, detail="sale not found")
    return {"sale": rows[0]}


def _load_pricing(cur, product_ids: List[str], client_id: Optional[str]):
    cur.execute(
        """
        SELECT id, name, price_public, price_commerce, price_wholesale
        FROM products
        WHERE id = ANY(%s)
        """,
        (product_ids,),
    )
    products = {str(r["id"]): r for r in cur.fetchall()}
    price_list = None
    if client_id:
        cur.execute(
            """
            SELECT pl.name AS price_list_name
            FROM clients c
            LEFT JOIN price_lists pl ON pl.id = c.price_list_id
            WHERE c.id = %s
            """,
            (client_id,),
        )
        row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=404, detail="client not found")
        price_list = row["price_list_name"]
    return products, price_list


@router.post("")
def create_sale(data: SaleIn, user=Depends(require_view("sales_create"))):
    if not data.lines:
        raise HTTPException(status_code=400, detail="at least one line is required")
    for l in data.lines:
        if l.quantity <= 0:
            raise HTTPException(status_code=400, detail="quantity must be > 0")
        if l.unit_price is not None and l.unit_price < 0:
            raise HTTPException(status_code=400, detail="unit_price must be >= 0")

    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            products, price_list = _load_pricing(cur, sorted({l.product_id for l in data.lines}), data.client_id)

    lines = []
    for l in data.lines:
        product = products.get(l.product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"product not found: {l.product_id}")
        price = l.unit_price if l.unit_price is not None else price_for_buyer(product, price_list)
        lines.append(
            SaleLineDraft(
                product_id=l.product_id,
                quantity=l.quantity,
                unit_price=price,
                product_name=product.get("name"),
                warehouse_id=l.warehouse_id,
            )
        )

    sub, tax, total = sale_totals(
        line_subtotal((l.quantity, l.unit_price) for l in lines),
        apply_tax=data.apply_tax,
        tax_rate=settings.sales_tax_rate,
    )
    draft = SaleDraft(
        lines=lines,
        sale_date=data.sale_date or date.today(),
        subtotal=sub,
        tax=tax,
        total=total,
        client_id=data.client_id,
        sale_type=data.sale_type,
        status="pending",
        notes=data.notes,
        sales_channel=data.sales_channel,
        store=data.store,
        exchange_rate=data.exchange_rate,
        first_payment=data.first_payment,
    )
    sale_id = submit_sale(
        draft,
        db_lot_loader(get_conn, user["user_id"], set_user_context),
        PgSaleWriter(get_conn, user["user_id"], set_user_context),
    )
    return {"id": sale_id, "subtotal": sub, "tax": tax, "total": total}


@router.patch("/{sale_id}/status")
def update_sale_status(sale_id: str, data: SaleStatusIn, user=Depends(require_view("sales_create"))):
    # Any status may follow any other.
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute("UPDATE sales SET status = %s WHERE id = %s", (data.status, sale_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="sale not found")
    json_log("info", "sale.status_updated", sale_id=sale_id, status=data.status)
    return {"ok": True}


@router.delete("/{sale_id}")
def delete_sale(sale_id: str, user=Depends(require_view("sales_create"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            call_rpc(cur, "delete_sale_and_restore_stock", (sale_id,))
    json_log("info", "sale.deleted", sale_id=sale_id)
    return {"ok": True}
