from fastapi import APIRouter, Depends, HTTPException

from ..config import settings
from ..db import get_conn, set_user_context
from ..deps import require_view
from ..product_metrics import product_dashboard
from ..rpc import call_rpc

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
def dashboard_stats(user=Depends(require_view("dashboard"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            stats = call_rpc(cur, "get_dashboard_stats", fetch="one") or {}
            cur.execute(
                """
                SELECT p.id, p.name, COALESCE(SUM(l.current_quantity), 0) AS total_stock
                FROM products p
                LEFT JOIN lots l ON l.product_id = p.id
                GROUP BY p.id, p.name
                HAVING COALESCE(SUM(l.current_quantity), 0) < %s
                ORDER BY total_stock, p.name
                """,
                (settings.low_stock_product_threshold,),
            )
            low = cur.fetchall()
    return {"stats": stats, "low_stock_threshold": settings.low_stock_product_threshold, "low_stock_products": low}


@router.get("/product-statistics")
def product_statistics(user=Depends(require_view("product_statistics"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            rows = call_rpc(cur, "get_product_statistics", fetch="all") or []
    return {"products": rows}


@router.get("/products/{product_id}")
def get_product_dashboard(product_id: str, user=Depends(require_view("product_dashboard"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT p.id, p.name, p.line, p.price_public, p.price_commerce, p.price_wholesale,
                       COALESCE((SELECT SUM(current_quantity) FROM lots WHERE product_id = p.id), 0) AS total_stock
                FROM products p
                WHERE p.id = %s
                """,
                (product_id,),
            )
            product = cur.fetchone()
            if not product:
                raise HTTPException(status_code=404, detail="product not found")
            cur.execute(
                """
                SELECT si.quantity, si.unit_price, s.sale_date
                FROM sale_items si
                JOIN sales s ON s.id = si.sale_id
                WHERE si.product_id = %s
                """,
                (product_id,),
            )
            sales = cur.fetchall()
            cur.execute(
                """
                SELECT s.id, s.name, s.unit, ps.quantity, s.unit_cost
                FROM product_supplies ps
                JOIN supplies s ON s.id = ps.supply_id
                WHERE ps.product_id = %s
                """,
                (product_id,),
            )
            supplies = cur.fetchall()
            cur.execute(
                """
                SELECT l.production_cost, l.created_at, l.warehouse_id, w.name AS warehouse_name, l.current_quantity
                FROM lots l
                LEFT JOIN warehouses w ON w.id = l.warehouse_id
                WHERE l.product_id = %s
                """,
                (product_id,),
            )
            lots = cur.fetchall()
    out = product_dashboard(product, sales, supplies, lots)
    per_wh: dict = {}
    for l in lots:
        key = l.get("warehouse_name") or "Sin depósito"
        per_wh[key] = per_wh.get(key, 0) + (l.get("current_quantity") or 0)
    out["stock_by_warehouse"] = per_wh
    return out
