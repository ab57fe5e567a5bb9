from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List
from decimal import Decimal
import json

from psycopg import errors as pg_errors

from ..db import get_admin_conn, get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..pricing_rules import merge_client_prices
from ..rpc import call_rpc

router = APIRouter(prefix="/pricing", tags=["pricing"])

PUBLIC_LIST_NAME = "Lista de Precios Pública"

# system_settings keys
THRESHOLD_KEYS = {"commerce": "THRESHOLD_COMMERCE", "wholesale": "THRESHOLD_WHOLESALE"}
RATE_KEYS = {"usd": "EXCHANGE_RATE_USD", "brl": "EXCHANGE_RATE_BRL"}
RATE_DEFAULTS = {"usd": Decimal("1000"), "brl": Decimal("180")}


class PriceListIn(BaseModel):
    name: str


class ListPriceIn(BaseModel):
    product_id: str
    price: Decimal


class ListPricesIn(BaseModel):
    prices: List[ListPriceIn]


class PriceListWithProductsIn(BaseModel):
    name: str
    prices: List[ListPriceIn]


class ThresholdsIn(BaseModel):
    commerce: Decimal = Decimal("0")
    wholesale: Decimal = Decimal("0")


class RatesIn(BaseModel):
    usd: Decimal
    brl: Decimal


def read_settings(cur, keys: dict, defaults: dict) -> dict:
    cur.execute("SELECT key, value FROM system_settings WHERE key = ANY(%s)", (list(keys.values()),))
    found = {r["key"]: r["value"] for r in cur.fetchall()}
    out = {}
    for name, key in keys.items():
        try:
            v = Decimal(str(found.get(key)))
        except Exception:
            v = None
        # Missing, unparsable or zero values fall back to the default.
        out[name] = v if v is not None and v.is_finite() and v != 0 else defaults[name]
    return out


def _write_settings(cur, keys: dict, values: dict):
    for name, key in keys.items():
        cur.execute(
            """
            INSERT INTO system_settings (key, value)
            VALUES (%s, %s)
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
            """,
            (key, str(values[name])),
        )


@router.get("/lists")
def list_price_lists(user=Depends(require_view("prices"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute("SELECT id, name FROM price_lists ORDER BY name")
            return {"lists": cur.fetchall()}


@router.post("/lists")
def create_price_list(data: PriceListIn, user=Depends(require_view("price_lists"))):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            try:
                cur.execute("INSERT INTO price_lists (id, name) VALUES (gen_random_uuid(), %s) RETURNING id", (name,))
            except pg_errors.UniqueViolation:
                raise HTTPException(status_code=409, detail=f'a price list named "{name}" already exists')
            return {"id": cur.fetchone()["id"]}


@router.post("/lists/with-products")
def create_price_list_with_products(data: PriceListWithProductsIn, user=Depends(require_view("price_lists"))):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    payload = [{"product_id": p.product_id, "price": str(p.price)} for p in data.prices]
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            row = call_rpc(cur, "create_price_list_with_products", (name, json.dumps(payload)), fetch="one")
    json_log("info", "pricing.list_created", name=name, products=len(payload))
    return {"id": (row or {}).get("create_price_list_with_products")}


@router.get("/lists/{list_id}/items")
def list_price_list_items(list_id: str, user=Depends(require_view("prices"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT p.id AS product_id, p.name AS product_name, p.line, i.price
                FROM price_list_items i
                JOIN products p ON p.id = i.product_id
                WHERE i.list_id = %s
                ORDER BY p.created_at
                """,
                (list_id,),
            )
            return {"items": cur.fetchall()}


@router.post("/lists/{list_id}/items")
def upsert_price_list_items(list_id: str, data: ListPricesIn, user=Depends(require_view("prices"))):
    for p in data.prices:
        if p.price < 0:
            raise HTTPException(status_code=400, detail="price must be >= 0")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO price_list_items (list_id, product_id, price)
                VALUES (%s, %s, %s)
                ON CONFLICT (list_id, product_id) DO UPDATE SET price = EXCLUDED.price
                """,
                [(list_id, p.product_id, p.price) for p in data.prices],
            )
    return {"ok": True, "count": len(data.prices)}


@router.get("/public")
def public_catalog():
    # Storefront and public list; readable without a session.
    with get_admin_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, description, line, barcode, image_url,
                       price_public, price_commerce, price_wholesale,
                       min_qty_commerce, min_qty_wholesale
                FROM products
                ORDER BY name
                """
            )
            return {"products": cur.fetchall()}


@router.get("/my-list")
def my_price_list(user=Depends(require_view("my_price_list"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute("SELECT id, name, line, price_public FROM products ORDER BY name")
            products = cur.fetchall()
            cur.execute(
                """
                SELECT c.price_list_id, pl.name AS price_list_name
                FROM clients c
                LEFT JOIN price_lists pl ON pl.id = c.price_list_id
                WHERE lower(c.email) = lower(%s)
                LIMIT 1
                """,
                (user["email"],),
            )
            client = cur.fetchone()
            list_prices = {}
            if client and client["price_list_id"]:
                cur.execute(
                    "SELECT product_id, price FROM price_list_items WHERE list_id = %s",
                    (client["price_list_id"],),
                )
                list_prices = {str(r["product_id"]): r["price"] for r in cur.fetchall()}
    return {
        "list_name": (client or {}).get("price_list_name") or PUBLIC_LIST_NAME,
        "items": merge_client_prices(products, list_prices),
    }


@router.get("/thresholds")
def get_thresholds(user=Depends(require_view("prices"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            return read_settings(cur, THRESHOLD_KEYS, {"commerce": Decimal("0"), "wholesale": Decimal("0")})


@router.put("/thresholds")
def save_thresholds(data: ThresholdsIn, user=Depends(require_view("price_lists"))):
    if data.commerce < 0 or data.wholesale < 0:
        raise HTTPException(status_code=400, detail="thresholds must be >= 0")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            _write_settings(cur, THRESHOLD_KEYS, data.model_dump())
    return {"ok": True}


@router.get("/exchange-rates")
def get_exchange_rates(user=Depends(require_view("comex"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            return read_settings(cur, RATE_KEYS, RATE_DEFAULTS)


@router.put("/exchange-rates")
def save_exchange_rates(data: RatesIn, user=Depends(require_view("users"))):
    if data.usd <= 0 or data.brl <= 0:
        raise HTTPException(status_code=400, detail="exchange rates must be > 0")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            _write_settings(cur, RATE_KEYS, data.model_dump())
    json_log("info", "pricing.rates_saved", usd=data.usd, brl=data.brl)
    return {"ok": True}
