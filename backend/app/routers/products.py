from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from psycopg import errors as pg_errors
from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..validation import Barcode

router = APIRouter(prefix="/products", tags=["products"])

_PRODUCT_COLUMNS = (
    "barcode",
    "name",
    "description",
    "line",
    "price_public",
    "price_commerce",
    "price_wholesale",
    "min_qty_commerce",
    "min_qty_wholesale",
    "image_url",
    "box_length_cm",
    "box_width_cm",
    "box_height_cm",
    "product_weight_kg",
    "products_per_box",
)

_NON_NEGATIVE = (
    "price_public",
    "price_commerce",
    "price_wholesale",
    "min_qty_commerce",
    "min_qty_wholesale",
    "box_length_cm",
    "box_width_cm",
    "box_height_cm",
    "product_weight_kg",
    "products_per_box",
)


class ProductIn(BaseModel):
    barcode: Optional[Barcode] = None
    name: str
    description: Optional[str] = None
    line: Optional[str] = None
    price_public: Decimal = Decimal("0")
    price_commerce: Decimal = Decimal("0")
    price_wholesale: Decimal = Decimal("0")
    min_qty_commerce: Optional[int] = None
    min_qty_wholesale: Optional[int] = None
    image_url: Optional[str] = None
    box_length_cm: Optional[Decimal] = None
    box_width_cm: Optional[Decimal] = None
    box_height_cm: Optional[Decimal] = None
    product_weight_kg: Optional[Decimal] = None
    products_per_box: Optional[int] = None


class ProductUpdate(BaseModel):
    barcode: Optional[Barcode] = None
    name: Optional[str] = None
    description: Optional[str] = None
    line: Optional[str] = None
    price_public: Optional[Decimal] = None
    price_commerce: Optional[Decimal] = None
    price_wholesale: Optional[Decimal] = None
    min_qty_commerce: Optional[int] = None
    min_qty_wholesale: Optional[int] = None
    image_url: Optional[str] = None
    box_length_cm: Optional[Decimal] = None
    box_width_cm: Optional[Decimal] = None
    box_height_cm: Optional[Decimal] = None
    product_weight_kg: Optional[Decimal] = None
    products_per_box: Optional[int] = None


def _check_non_negative(values: dict):
    for k in _NON_NEGATIVE:
        if values.get(k) is not None and values[k] < 0:
            raise HTTPException(status_code=400, detail=f"{k} must be >= 0")


_LIST_SQL = f"""
    SELECT {', '.join('p.' + c for c in _PRODUCT_COLUMNS)}, p.id,
           COALESCE(SUM(l.current_quantity), 0) AS total_stock
    FROM products p
    LEFT JOIN lots l ON l.product_id = p.id
"""


@router.get("")
def list_products(user=Depends(require_view("products"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(_LIST_SQL + " GROUP BY p.id ORDER BY p.name")
            return {"products": cur.fetchall()}


@router.get("/barcode/{code}")
def get_product_by_barcode(code: str, user=Depends(require_view("products"))):
    # A scanned code is only looked up; decoding happens on the device.
    code = (code or "").strip()
    if not code:
        raise HTTPException(status_code=400, detail="barcode is required")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(_LIST_SQL + " WHERE p.barcode = %s GROUP BY p.id", (code,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="product not found")
            return {"product": row}


@router.get("/{product_id}")
def get_product(product_id: str, user=Depends(require_view("products"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(_LIST_SQL + " WHERE p.id = %s GROUP BY p.id", (product_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="product not found")
            return {"product": row}


@router.post("")
def create_product(data: ProductIn, user=Depends(require_view("products"))):
    values = data.model_dump()
    values["name"] = (values["name"] or "").strip()
    if not values["name"]:
        raise HTTPException(status_code=400, detail="name is required")
    _check_non_negative(values)
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            try:
                cur.execute(
                    f"""
                    INSERT INTO products (id, {', '.join(_PRODUCT_COLUMNS)})
                    VALUES (gen_random_uuid(), {', '.join(['%s'] * len(_PRODUCT_COLUMNS))})
                    RETURNING id
                    """,
                    tuple(values[c] for c in _PRODUCT_COLUMNS),
                )
            except pg_errors.UniqueViolation:
                raise HTTPException(status_code=409, detail="barcode already in use")
            pid = cur.fetchone()["id"]
    json_log("info", "product.created", product_id=pid)
    return {"id": pid}


@router.patch("/{product_id}")
def update_product(product_id: str, data: ProductUpdate, user=Depends(require_view("products"))):
    patch = {k: getattr(data, k) for k in getattr(data, "model_fields_set", set())}
    if "name" in patch:
        patch["name"] = (patch["name"] or "").strip()
        if not patch["name"]:
            raise HTTPException(status_code=400, detail="name is required")
    _check_non_negative(patch)
    if not patch:
        return {"ok": True}
    fields = []
    params = []
    for k, v in patch.items():
        fields.append(f"{k} = %s")
        params.append(v)
    params.append(product_id)
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            try:
                cur.execute(f"UPDATE products SET {', '.join(fields)} WHERE id = %s", params)
            except pg_errors.UniqueViolation:
                raise HTTPException(status_code=409, detail="barcode already in use")
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="product not found")
            return {"ok": True}


@router.delete("/{product_id}")
def delete_product(product_id: str, user=Depends(require_view("products"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            try:
                cur.execute("DELETE FROM products WHERE id = %s", (product_id,))
            except pg_errors.ForeignKeyViolation:
                raise HTTPException(status_code=409, detail="product has lots or sales and cannot be deleted")
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="product not found")
    json_log("info", "product.deleted", product_id=product_id)
    return {"ok": True}
