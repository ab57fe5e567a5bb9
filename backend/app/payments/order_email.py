from decimal import Decimal, ROUND_HALF_UP
from html import escape
from typing import Optional

from ..config import settings
from ..http_json import request_json

RESEND_URL = "https://api.resend.com/emails"

_TD = 'style="padding: 8px; border-bottom: 1px solid #ddd;'


def format_price(v) -> str:
    # es-AR: "$1.234,56"
    d = Decimal(str(v or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    whole, _, frac = f"{d:,.2f}".partition(".")
    return f"${whole.replace(',', '.')},{frac}"


def _s(v) -> str:
    return escape(str(v)) if v not in (None, "") else ""


def order_email_html(payment: dict) -> str:
    payer = payment.get("payer") or {}
    items = (payment.get("additional_info") or {}).get("items") or []
    shipping = (payment.get("shipments") or {}).get("receiver_address") or {}
    rows = "".join(
        f"<tr><td {_TD}\">{_s(it.get('title'))}</td>"
        f"<td {_TD} text-align: center;\">{_s(it.get('quantity'))}</td>"
        f"<td {_TD} text-align: right;\">{format_price(it.get('unit_price'))}</td>"
        f"<td {_TD} text-align: right;\">"
        f"{format_price(Decimal(str(it.get('unit_price') or 0)) * Decimal(str(it.get('quantity') or 0)))}</td></tr>"
        for it in items
    )
    ident = (payer.get("identification") or {}).get("number") or "No especificado"
    return (
        '<div style="font-family: Arial, sans-serif; line-height: 1.6;">'
        f"<h1>Pago Aprobado - Orden #{_s(payment.get('external_reference') or 'N/A')}</h1>"
        "<p>Se ha recibido un pago exitoso a través de Mercado Pago.</p>"
        f"<p><strong>ID de Pago MP:</strong> {_s(payment.get('id'))}</p>"
        "<h2>Detalles del Pedido</h2>"
        '<table style="width: 100%; border-collapse: collapse;">'
        "<thead><tr><th>Producto</th><th>Cantidad</th><th>Precio Unit.</th><th>Total</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
        f"<p><strong>Total Pagado: {format_price(payment.get('transaction_amount'))}</strong></p>"
        "<h2>Información del Comprador</h2>"
        f"<p><strong>Nombre:</strong> {_s(payer.get('first_name'))} {_s(payer.get('last_name'))}</p>"
        f"<p><strong>Email:</strong> {_s(payer.get('email'))}</p>"
        f"<p><strong>DNI:</strong> {_s(ident)}</p>"
        "<h2>Dirección de Envío</h2>"
        f"<p>{_s(shipping.get('street_name')) or 'No especificado'} {_s(shipping.get('street_number'))}<br>"
        f"{_s(shipping.get('zip_code'))}, {_s(shipping.get('city_name'))}<br>"
        f"{_s(shipping.get('state_name'))}</p>"
        "</div>"
    )


def is_configured() -> bool:
    return bool(settings.resend_api_key and settings.order_prep_email)


def send_order_email(payment: dict, request=request_json) -> Optional[dict]:
    """Mails the preparation team an approved order. Returns None when mail is not configured."""
    if not is_configured():
        return None
    ref = str(payment.get("external_reference") or "N/A")
    return request(
        "POST",
        RESEND_URL,
        body={
            "from": settings.order_email_from,
            "to": [settings.order_prep_email],
            "subject": f"Nuevo Pedido Aprobado - Orden #{ref[:8]}",
            "html": order_email_html(payment),
        },
        headers={"Authorization": f"Bearer {settings.resend_api_key}"},
    )
