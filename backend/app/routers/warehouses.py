from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


class WarehouseIn(BaseModel):
    name: str
    location: Optional[str] = None
    is_default: bool = False


class WarehouseUpdate(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    is_default: Optional[bool] = None


def _clear_default(cur, except_id: Optional[str] = None):
    # At most one default warehouse; production lands there.
    if except_id:
        cur.execute("UPDATE warehouses SET is_default = false WHERE is_default = true AND id <> %s", (except_id,))
    else:
        cur.execute("UPDATE warehouses SET is_default = false WHERE is_default = true")


@router.get("")
def list_warehouses(user=Depends(require_view("warehouses"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, location, is_default
                FROM warehouses
                ORDER BY is_default DESC, name
                """
            )
            return {"warehouses": cur.fetchall()}


@router.post("")
def create_warehouse(data: WarehouseIn, user=Depends(require_view("warehouses"))):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                if data.is_default:
                    _clear_default(cur)
                cur.execute(
                    """
                    INSERT INTO warehouses (id, name, location, is_default)
                    VALUES (gen_random_uuid(), %s, %s, %s)
                    RETURNING id
                    """,
                    (name, data.location, data.is_default),
                )
                wid = cur.fetchone()["id"]
                json_log("info", "warehouse.created", warehouse_id=wid, is_default=data.is_default)
                return {"id": wid}


@router.patch("/{warehouse_id}")
def update_warehouse(warehouse_id: str, data: WarehouseUpdate, user=Depends(require_view("warehouses"))):
    patch = {k: getattr(data, k) for k in getattr(data, "model_fields_set", set())}
    if "name" in patch:
        patch["name"] = (patch["name"] or "").strip()
        if not patch["name"]:
            raise HTTPException(status_code=400, detail="name is required")
    if "is_default" in patch and patch["is_default"] is None:
        patch["is_default"] = False
    if not patch:
        return {"ok": True}

    fields = []
    params = []
    for k, v in patch.items():
        fields.append(f"{k} = %s")
        params.append(v)
    params.append(warehouse_id)
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                if patch.get("is_default"):
                    _clear_default(cur, except_id=warehouse_id)
                cur.execute(
                    f"""
                    UPDATE warehouses
                    SET {', '.join(fields)}
                    WHERE id = %s
                    """,
                    params,
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="warehouse not found")
                return {"ok": True}


@router.delete("/{warehouse_id}")
def delete_warehouse(warehouse_id: str, user=Depends(require_view("warehouses"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute("DELETE FROM warehouses WHERE id = %s", (warehouse_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="warehouse not found")
            json_log("info", "warehouse.deleted", warehouse_id=warehouse_id)
            return {"ok": True}
