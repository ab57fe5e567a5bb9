from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from datetime import date
from psycopg import errors as pg_errors
from ..db import get_conn, set_user_context
from ..deps import require_view

router = APIRouter(prefix="/clients", tags=["clients"])

_CLIENT_COLUMNS = (
    "name",
    "representative",
    "province",
    "city",
    "zip_code",
    "address",
    "business_type",
    "phone",
    "social_media",
    "cuit",
    "email",
    "description",
    "price_list_id",
    "price_list_sent",
    "price_list_sent_at",
    "has_stock",
)


class ClientIn(BaseModel):
    name: str
    representative: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    address: Optional[str] = None
    business_type: Optional[str] = None
    phone: Optional[str] = None
    social_media: Optional[str] = None
    cuit: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    price_list_id: Optional[str] = None
    price_list_sent: bool = False
    price_list_sent_at: Optional[date] = None
    has_stock: bool = False


class ClientUpdate(BaseModel):
    name: Optional[str] = None
    representative: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    address: Optional[str] = None
    business_type: Optional[str] = None
    phone: Optional[str] = None
    social_media: Optional[str] = None
    cuit: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    price_list_id: Optional[str] = None
    price_list_sent: Optional[bool] = None
    price_list_sent_at: Optional[date] = None
    has_stock: Optional[bool] = None


@router.get("")
def list_clients(user=Depends(require_view("clients"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT c.id, {', '.join('c.' + k for k in _CLIENT_COLUMNS)}, c.created_at,
                       COALESCE(pl.name, 'N/A') AS price_list_name
                FROM clients c
                LEFT JOIN price_lists pl ON pl.id = c.price_list_id
                ORDER BY c.created_at DESC
                """
            )
            return {"clients": cur.fetchall()}


@router.get("/simple")
def list_clients_simple(user=Depends(require_view("sales_create"))):
    # Picker for the manual sale form.
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT c.id, c.name, pl.name AS price_list_name
                FROM clients c
                LEFT JOIN price_lists pl ON pl.id = c.price_list_id
                ORDER BY c.name
                """
            )
            return {"clients": cur.fetchall()}


@router.post("")
def create_client(data: ClientIn, user=Depends(require_view("clients"))):
    if not (data.name or "").strip():
        raise HTTPException(status_code=400, detail="name is required")
    values = data.model_dump()
    values["name"] = values["name"].strip()
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            try:
                cur.execute(
                    f"""
                    INSERT INTO clients (id, {', '.join(_CLIENT_COLUMNS)})
                    VALUES (gen_random_uuid(), {', '.join(['%s'] * len(_CLIENT_COLUMNS))})
                    RETURNING id
                    """,
                    tuple(values[k] for k in _CLIENT_COLUMNS),
                )
            except pg_errors.ForeignKeyViolation:
                raise HTTPException(status_code=400, detail="invalid price_list_id")
            return {"id": cur.fetchone()["id"]}


@router.patch("/{client_id}")
def update_client(client_id: str, data: ClientUpdate, user=Depends(require_view("clients"))):
    patch = {k: getattr(data, k) for k in getattr(data, "model_fields_set", set())}
    if "name" in patch and not (patch["name"] or "").strip():
        raise HTTPException(status_code=400, detail="name is required")
    if not patch:
        return {"ok": True}
    fields = []
    params = []
    for k, v in patch.items():
        fields.append(f"{k} = %s")
        params.append(v)
    params.append(client_id)
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(f"UPDATE clients SET {', '.join(fields)} WHERE id = %s", params)
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="client not found")
            return {"ok": True}


@router.delete("/{client_id}")
def delete_client(client_id: str, user=Depends(require_view("clients"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            try:
                cur.execute("DELETE FROM clients WHERE id = %s", (client_id,))
            except pg_errors.ForeignKeyViolation:
                raise HTTPException(status_code=409, detail="client has sales and cannot be deleted")
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="client not found")
            return {"ok": True}
