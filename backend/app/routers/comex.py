from fastapi import APIRouter, Depends
from pydantic import BaseModel
from dataclasses import asdict
from decimal import Decimal

from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..pricing_rules import comex_quote
from ..rpc import call_rpc
from .pricing import RATE_DEFAULTS, RATE_KEYS, read_settings

router = APIRouter(prefix="/comex", tags=["comex"])


class ApproveIn(BaseModel):
    user_id: str


def group_by_line(quotes) -> list[dict]:
    groups: dict = {}
    for q in quotes:
        groups.setdefault(q.line, []).append(asdict(q))
    return [{"line": line, "products": groups[line]} for line in sorted(groups)]


@router.get("/quote")
def quote(user=Depends(require_view("comex"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            rates = read_settings(cur, RATE_KEYS, RATE_DEFAULTS)
            cur.execute(
                """
                SELECT id, name, line, price_wholesale,
                       box_length_cm, box_width_cm, box_height_cm, product_weight_kg, products_per_box
                FROM products
                ORDER BY name
                """
            )
            products = cur.fetchall()
    usd: Decimal = rates["usd"]
    return {
        "exchange_rates": rates,
        "lines": group_by_line(comex_quote(p, usd) for p in products),
    }


@router.get("/access-requests")
def list_access_requests(user=Depends(require_view("users"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            rows = call_rpc(cur, "get_pending_access_requests", fetch="all") or []
    return {"requests": rows}


@router.post("/access-requests/{request_id}/approve")
def approve_access_request(request_id: str, data: ApproveIn, user=Depends(require_view("users"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            call_rpc(cur, "approve_comex_request", (request_id, data.user_id))
    json_log("info", "comex.request_approved", request_id=request_id, user_id=data.user_id)
    return {"ok": True}


@router.post("/access-requests/{request_id}/reject")
def reject_access_request(request_id: str, user=Depends(require_view("users"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            call_rpc(cur, "reject_comex_request", (request_id,))
    json_log("info", "comex.request_rejected", request_id=request_id)
    return {"ok": True}
