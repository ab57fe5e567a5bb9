from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from datetime import date

from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..rpc import call_rpc
from ..validation import SupplyCategory, SupplyUnit

router = APIRouter(prefix="/supplies", tags=["supplies"])

_SUPPLY_COLUMNS = ("name", "supplier", "category", "unit", "unit_cost", "stock", "last_purchase", "last_lot_ordered")
# Stock only moves through purchases (add_supply_stock).
_UPDATABLE = ("name", "supplier", "category", "unit", "unit_cost")


class SupplyIn(BaseModel):
    name: str
    supplier: Optional[str] = None
    category: Optional[SupplyCategory] = None
    unit: SupplyUnit = "unidades"
    unit_cost: Decimal = Decimal("0")
    stock: Decimal = Decimal("0")
    last_purchase: Optional[date] = None
    last_lot_ordered: Optional[str] = None
    product_ids: List[str] = []


class SupplyUpdate(BaseModel):
    name: Optional[str] = None
    supplier: Optional[str] = None
    category: Optional[SupplyCategory] = None
    unit: Optional[SupplyUnit] = None
    unit_cost: Optional[Decimal] = None
    product_ids: Optional[List[str]] = None


class SupplyStockIn(BaseModel):
    quantity: Decimal
    unit_cost: Decimal
    lot_code: Optional[str] = None
    purchase_date: Optional[date] = None


def _link_products(cur, supply_id: str, product_ids: List[str]):
    """
    Makes `product_ids` the exact set of products using this supply.
    Links that already exist keep their per-unit quantity; new ones use 1.
    """
    ids = sorted({str(p) for p in product_ids if p})
    cur.execute(
        "DELETE FROM product_supplies WHERE supply_id = %s AND NOT (product_id = ANY(%s::uuid[]))",
        (supply_id, ids),
    )
    if ids:
        cur.executemany(
            """
            INSERT INTO product_supplies (product_id, supply_id, quantity)
            VALUES (%s, %s, 1)
            ON CONFLICT (product_id, supply_id) DO NOTHING
            """,
            [(pid, supply_id) for pid in ids],
        )


def _check_amounts(values: dict):
    for k in ("unit_cost", "stock"):
        if values.get(k) is not None and values[k] < 0:
            raise HTTPException(status_code=400, detail=f"{k} must be >= 0")


@router.get("")
def list_supplies(user=Depends(require_view("supplies"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, {', '.join(_SUPPLY_COLUMNS)}
                FROM supplies
                ORDER BY name
                """
            )
            return {"supplies": cur.fetchall()}


@router.get("/{supply_id}")
def get_supply(supply_id: str, user=Depends(require_view("supplies"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(f"SELECT id, {', '.join(_SUPPLY_COLUMNS)} FROM supplies WHERE id = %s", (supply_id,))
            supply = cur.fetchone()
            if not supply:
                raise HTTPException(status_code=404, detail="supply not found")
            cur.execute(
                "SELECT product_id FROM product_supplies WHERE supply_id = %s ORDER BY product_id",
                (supply_id,),
            )
            product_ids = [str(r["product_id"]) for r in cur.fetchall()]
    return {"supply": supply, "product_ids": product_ids}


@router.post("")
def create_supply(data: SupplyIn, user=Depends(require_view("supplies"))):
    values = data.model_dump()
    values["name"] = (values["name"] or "").strip()
    if not values["name"]:
        raise HTTPException(status_code=400, detail="name is required")
    _check_amounts(values)
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO supplies (id, {', '.join(_SUPPLY_COLUMNS)})
                    VALUES (gen_random_uuid(), {', '.join(['%s'] * len(_SUPPLY_COLUMNS))})
                    RETURNING id
                    """,
                    tuple(values[c] for c in _SUPPLY_COLUMNS),
                )
                sid = str(cur.fetchone()["id"])
                _link_products(cur, sid, data.product_ids)
    json_log("info", "supply.created", supply_id=sid, products=len(data.product_ids))
    return {"id": sid}


@router.patch("/{supply_id}")
def update_supply(supply_id: str, data: SupplyUpdate, user=Depends(require_view("supplies"))):
    sent = getattr(data, "model_fields_set", set())
    patch = {k: getattr(data, k) for k in _UPDATABLE if k in sent}
    if "name" in patch:
        patch["name"] = (patch["name"] or "").strip()
        if not patch["name"]:
            raise HTTPException(status_code=400, detail="name is required")
    _check_amounts(patch)
    relink = "product_ids" in sent
    if not patch and not relink:
        return {"ok": True}

    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                if patch:
                    fields = [f"{k} = %s" for k in patch]
                    cur.execute(
                        f"UPDATE supplies SET {', '.join(fields)} WHERE id = %s",
                        [*patch.values(), supply_id],
                    )
                else:
                    cur.execute("SELECT 1 FROM supplies WHERE id = %s", (supply_id,))
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="supply not found")
                if relink:
                    _link_products(cur, supply_id, data.product_ids or [])
    json_log("info", "supply.updated", supply_id=supply_id, fields=sorted(patch), relinked=relink)
    return {"ok": True}


@router.post("/{supply_id}/stock")
def add_supply_stock(supply_id: str, data: SupplyStockIn, user=Depends(require_view("supplies"))):
    if data.quantity <= 0:
        raise HTTPException(status_code=400, detail="quantity must be > 0")
    if data.unit_cost < 0:
        raise HTTPException(status_code=400, detail="unit_cost must be >= 0")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            call_rpc(
                cur,
                "add_supply_stock",
                (supply_id, data.quantity, data.unit_cost, (data.lot_code or "").strip() or None, data.purchase_date),
            )
    json_log("info", "supply.stock_added", supply_id=supply_id, quantity=data.quantity, unit_cost=data.unit_cost)
    return {"ok": True}
