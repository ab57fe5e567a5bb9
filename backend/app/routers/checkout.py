from fastapi import APIRouter, Request
from pydantic import BaseModel
from typing import List
from decimal import Decimal

from ..checkout import handle_payment_notification, place_order
from ..db import get_admin_conn
from ..logs import json_log
from ..payments.mercadopago import MercadoPagoClient
from ..sale_submission import PgSaleWriter, db_lot_loader
from ..validation import CheckoutPaymentMethod

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CartItemIn(BaseModel):
    id: str
    name: str = ""
    quantity: int
    unit_price: Decimal = Decimal("0")


class PayerIn(BaseModel):
    name: str = ""
    surname: str = ""
    email: str = ""
    phone: str = ""
    dni: str = ""
    street_name: str = ""
    street_number: str = ""
    zip_code: str = ""
    city: str = ""
    province: str = ""


class CheckoutIn(BaseModel):
    items: List[CartItemIn]
    payer: PayerIn
    payment_method: CheckoutPaymentMethod
    shipping_cost: Decimal = Decimal("0")


def _load_products(product_ids: List[str]) -> dict:
    with get_admin_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, price_public, price_commerce, price_wholesale,
                       min_qty_commerce, min_qty_wholesale
                FROM products
                WHERE id = ANY(%s)
                """,
                (product_ids,),
            )
            return {str(r["id"]): r for r in cur.fetchall()}


def _mark_paid(sale_id: str, note: str) -> None:
    with get_admin_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("UPDATE sales SET status = 'paid', notes = %s WHERE id = %s", (note, sale_id))


@router.post("")
def checkout(data: CheckoutIn, request: Request):
    cart = [it.model_dump() for it in data.items]
    result = place_order(
        cart,
        data.payer.model_dump(),
        data.payment_method,
        data.shipping_cost,
        host=request.headers.get("x-forwarded-host") or request.headers.get("host"),
        products=_load_products(sorted({c["id"] for c in cart})),
        load_lots=db_lot_loader(get_admin_conn),
        writer=PgSaleWriter(get_admin_conn),
    )
    return {
        "sale_id": result.sale_id,
        "payment_method": result.payment_method,
        "subtotal": result.subtotal,
        "discount": result.discount,
        "shipping_cost": result.shipping_cost,
        "total": result.total,
        "redirect_url": result.redirect_url,
    }


@router.post("/webhook")
async def payment_webhook(request: Request):
    try:
        body = await request.json()
    except ValueError:
        body = {}
    outcome = handle_payment_notification(
        body if isinstance(body, dict) else {},
        gateway=MercadoPagoClient(),
        mark_paid=_mark_paid,
    )
    json_log("info", "checkout.webhook", outcome=outcome)
    return {"ok": True, "outcome": outcome}
