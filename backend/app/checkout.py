"""
Storefront checkout.

A guest cart becomes a pending web sale (stock reserved through lot
allocation) and then either a Mercado Pago redirect or a bank-transfer total.
Unit prices are recomputed from the product tiers, never taken from the cart.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .config import settings
from .errors import InvalidInputError, NotFoundError, PaymentGatewayError
from .logs import json_log
from .payments import order_email
from .payments.mercadopago import MercadoPagoClient, build_preference, build_preference_items
from .pricing_rules import checkout_totals, line_subtotal, price_for_quantity, q_money
from .sale_submission import LotLoader, SaleDraft, SaleLineDraft, SaleWriter, submit_sale

PAYER_FIELDS = (
    "name",
    "surname",
    "email",
    "phone",
    "dni",
    "street_name",
    "street_number",
    "zip_code",
    "city",
    "province",
)
_DIGIT_FIELDS = {"dni", "phone", "zip_code"}
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

METHOD_LABELS = {"mercadopago": "WEB MP", "transfer": "WEB TRANSFERENCIA"}

PAYMENT_TOPICS = {"payment", "payment.created", "payment.updated"}


def validate_payer(payer: dict) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for name in PAYER_FIELDS:
        value = str(payer.get(name) or "").strip()
        if not value:
            errors[name] = "Requerido."
        elif name in _DIGIT_FIELDS and not value.isdigit():
            errors[name] = "Solo números."
        elif name == "email" and not _EMAIL_RE.match(value):
            errors[name] = "Email inválido."
    return errors


def store_for_host(host: Optional[str]) -> str:
    host = (host or "").lower()
    for fragment, store in settings.store_hosts.items():
        if fragment in host:
            return store
    return settings.default_store


def checkout_note(method: str, payer: dict, shipping_cost: Decimal, discount: Decimal) -> str:
    shipping = f" [Incluye Envío: ${q_money(shipping_cost)}]" if shipping_cost > 0 else " [Envío Gratis]"
    pct = int(settings.transfer_discount_rate * 100)
    discount_note = f" [Descuento Transferencia {pct}%: -${q_money(discount)}]" if discount > 0 else ""
    address = (
        f"{payer['street_name']} {payer['street_number']}, {payer['city']}, "
        f"{payer['province']} (CP: {payer['zip_code']})"
    )
    return (
        f"{METHOD_LABELS[method]}{shipping}{discount_note} - {payer['name']} {payer['surname']} "
        f"(DNI: {payer['dni']}) - Tel: {payer['phone']} - Dirección: {address}"
    )


@dataclass
class CheckoutResult:
    sale_id: str
    payment_method: str
    subtotal: Decimal
    discount: Decimal
    shipping_cost: Decimal
    total: Decimal
    redirect_url: Optional[str] = None


def priced_cart(cart: List[dict], products: Dict[str, dict]) -> List[dict]:
    out = []
    for it in cart:
        pid = str(it["id"])
        product = products.get(pid)
        if product is None:
            raise NotFoundError(f"product not found: {pid}", product_id=pid)
        qty = int(it["quantity"])
        if qty <= 0:
            raise InvalidInputError("quantity must be > 0", product_id=pid)
        out.append(
            {
                "id": pid,
                "name": product.get("name") or it.get("name") or "",
                "quantity": qty,
                "unit_price": price_for_quantity(product, qty),
            }
        )
    return out


def place_order(
    cart: List[dict],
    payer: dict,
    payment_method: str,
    shipping_cost,
    *,
    host: Optional[str],
    products: Dict[str, dict],
    load_lots: LotLoader,
    writer: SaleWriter,
    gateway: Optional[MercadoPagoClient] = None,
    today: Optional[date] = None,
) -> CheckoutResult:
    if not cart:
        raise InvalidInputError("the cart is empty")
    errors = validate_payer(payer)
    if errors:
        raise InvalidInputError("Por favor, completa todos los campos correctamente.", fields=errors)
    if payment_method not in METHOD_LABELS:
        raise InvalidInputError(f"unsupported payment method: {payment_method}")

    shipping = Decimal(str(shipping_cost or 0))
    if shipping < 0:
        raise InvalidInputError("shipping cost must be >= 0")

    lines = priced_cart(cart, products)
    sub, discount, total = checkout_totals(
        line_subtotal((l["quantity"], l["unit_price"]) for l in lines),
        payment_method=payment_method,
        shipping_cost=shipping,
        discount_rate=settings.transfer_discount_rate,
    )
    draft = SaleDraft(
        lines=[
            SaleLineDraft(product_id=l["id"], quantity=l["quantity"], unit_price=l["unit_price"], product_name=l["name"])
            for l in lines
        ],
        sale_date=today or date.today(),
        subtotal=sub,
        tax=Decimal("0.00"),
        total=total,
        sale_type="sale",
        status="pending",
        notes=checkout_note(payment_method, payer, shipping, discount),
        sales_channel="web",
        store=store_for_host(host),
    )
    sale_id = submit_sale(draft, load_lots, writer)
    result = CheckoutResult(
        sale_id=sale_id,
        payment_method=payment_method,
        subtotal=sub,
        discount=discount,
        shipping_cost=q_money(shipping),
        total=total,
    )
    if payment_method == "mercadopago":
        gateway = gateway or MercadoPagoClient()
        pref = build_preference(build_preference_items(lines, shipping), payer, sale_id)
        result.redirect_url = gateway.create_preference(pref)
    json_log("info", "checkout.order_placed", sale_id=sale_id, payment_method=payment_method, total=total, store=draft.store)
    return result


def is_payment_notification(body: dict) -> bool:
    return any(body.get(k) in PAYMENT_TOPICS for k in ("topic", "type", "action"))


def handle_payment_notification(
    body: dict,
    *,
    gateway: MercadoPagoClient,
    mark_paid: Callable[[str, str], None],
    send_email: Callable[[dict], object] = order_email.send_order_email,
) -> str:
    """
    Processes one gateway notification and returns what happened
    ("ignored", "no_payment_id", "not_approved", "paid", "error").
    Never raises; the gateway must always get a 200.
    """
    if not is_payment_notification(body or {}):
        return "ignored"
    payment_id = ((body or {}).get("data") or {}).get("id")
    if not payment_id:
        return "no_payment_id"
    try:
        payment = gateway.get_payment(str(payment_id))
    except PaymentGatewayError as e:
        json_log("error", "checkout.webhook_failed", payment_id=payment_id, error=e.message)
        return "error"
    except Exception as e:
        json_log("error", "checkout.webhook_failed", payment_id=payment_id, error=str(e) or type(e).__name__)
        return "error"
    if not isinstance(payment, dict):
        json_log("error", "checkout.webhook_bad_payment", payment_id=payment_id)
        return "error"
    if payment.get("status") != "approved":
        return "not_approved"

    ref = payment.get("external_reference")
    if ref:
        try:
            mark_paid(str(ref), f"Pagado vía Mercado Pago (ID: {payment_id}).")
            json_log("info", "checkout.sale_paid", sale_id=ref, payment_id=payment_id)
        except Exception as e:
            json_log("error", "checkout.mark_paid_failed", sale_id=ref, payment_id=payment_id, error=str(e))
    else:
        json_log("warning", "checkout.webhook_no_reference", payment_id=payment_id)

    try:
        if send_email(payment) is not None:
            json_log("info", "checkout.order_email_sent", payment_id=payment_id)
    except Exception as e:
        json_log("error", "checkout.order_email_failed", payment_id=payment_id, error=str(e))
    return "paid"
