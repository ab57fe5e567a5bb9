from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from datetime import date

from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..lot_allocation import fetch_lots_for_sale, usable_quantity
from ..rpc import call_rpc

router = APIRouter(prefix="/stock", tags=["stock"])


class ProductionIn(BaseModel):
    product_id: str
    quantity: int
    lot_code: str
    expiry_date: Optional[date] = None
    production_cost: Decimal = Decimal("0")


class LotUpdateIn(BaseModel):
    lot_code: str
    initial_quantity: int
    expiry_date: Optional[date] = None
    production_cost: Decimal = Decimal("0")


class TransferIn(BaseModel):
    lot_id: str
    target_warehouse_id: str
    quantity: int
    notes: Optional[str] = None


def summarize_stock(products: List[dict], lots: List[dict], warehouses: List[dict]) -> List[dict]:
    """
    Groups lot rows under their products: total stock, stock per warehouse and
    the lots themselves (already ordered by expiry, nulls last).
    """
    wh_names = {str(w["id"]): w["name"] for w in warehouses}
    by_product: dict = {}
    for lot in lots:
        by_product.setdefault(str(lot["product_id"]), []).append(lot)

    out = []
    for p in products:
        plots = by_product.get(str(p["id"]), [])
        per_wh: dict = {}
        for lot in plots:
            wid = str(lot["warehouse_id"]) if lot.get("warehouse_id") else None
            per_wh[wid] = per_wh.get(wid, Decimal("0")) + Decimal(str(lot["current_quantity"] or 0))
        out.append(
            {
                "id": p["id"],
                "name": p["name"],
                "barcode": p.get("barcode"),
                "total_stock": sum((Decimal(str(l["current_quantity"] or 0)) for l in plots), Decimal("0")),
                "stock_by_warehouse": [
                    {"warehouse_id": wid, "warehouse_name": wh_names.get(wid or "", "Sin depósito"), "quantity": qty}
                    for wid, qty in per_wh.items()
                ],
                "lots": plots,
            }
        )
    return out


@router.get("/products")
def list_stock(user=Depends(require_view("stock"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute("SELECT id, name, barcode FROM products ORDER BY name")
            products = cur.fetchall()
            cur.execute(
                """
                SELECT id, product_id, warehouse_id, lot_code, initial_quantity, current_quantity,
                       expiry_date, production_cost, created_at
                FROM lots
                ORDER BY expiry_date ASC NULLS LAST, id
                """
            )
            lots = cur.fetchall()
            cur.execute("SELECT id, name FROM warehouses")
            warehouses = cur.fetchall()
    return {"products": summarize_stock(products, lots, warehouses)}


@router.get("/products/{product_id}/lots")
def lots_for_sale(
    product_id: str,
    warehouse_id: Optional[str] = Query(None),
    user=Depends(require_view("sales_create")),
):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            lots = fetch_lots_for_sale(cur, product_id, warehouse_id)
    return {
        "lots": [
            {
                "id": l.id,
                "lot_code": l.lot_code,
                "warehouse_id": l.warehouse_id,
                "expiry_date": l.expiry_date,
                "current_quantity": l.current_remaining,
                "usable_quantity": usable_quantity(l.current_remaining),
            }
            for l in lots
        ],
        "available": sum(max(usable_quantity(l.current_remaining), 0) for l in lots),
    }


@router.post("/production")
def register_production(data: ProductionIn, user=Depends(require_view("stock"))):
    if data.quantity <= 0:
        raise HTTPException(status_code=400, detail="quantity must be > 0")
    if not data.lot_code.strip():
        raise HTTPException(status_code=400, detail="lot_code is required")
    if data.production_cost < 0:
        raise HTTPException(status_code=400, detail="production_cost must be >= 0")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            # Lands in the default warehouse; an existing lot code is merged into.
            call_rpc(
                cur,
                "register_production",
                (data.product_id, data.quantity, data.lot_code.strip(), data.expiry_date, data.production_cost),
            )
    json_log("info", "stock.production_registered", product_id=data.product_id, lot_code=data.lot_code, quantity=data.quantity)
    return {"ok": True}


@router.patch("/lots/{lot_id}")
def update_lot(lot_id: str, data: LotUpdateIn, user=Depends(require_view("stock"))):
    if data.initial_quantity < 0:
        raise HTTPException(status_code=400, detail="initial_quantity must be >= 0")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            call_rpc(
                cur,
                "update_production",
                (lot_id, data.lot_code.strip(), data.initial_quantity, data.expiry_date, data.production_cost),
            )
    json_log("info", "stock.lot_updated", lot_id=lot_id)
    return {"ok": True}


@router.post("/transfers")
def transfer_stock(data: TransferIn, user=Depends(require_view("stock_transfers"))):
    if data.quantity <= 0:
        raise HTTPException(status_code=400, detail="quantity must be > 0")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            call_rpc(cur, "transfer_stock", (data.lot_id, data.target_warehouse_id, data.quantity, data.notes))
    json_log(
        "info",
        "stock.transferred",
        lot_id=data.lot_id,
        target_warehouse_id=data.target_warehouse_id,
        quantity=data.quantity,
    )
    return {"ok": True}


@router.get("/transfers")
def list_transfers(user=Depends(require_view("stock_transfers"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            rows = call_rpc(cur, "get_transfer_history", fetch="all") or []
    return {"transfers": rows}
