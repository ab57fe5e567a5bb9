"""
Mercado Pago checkout client.

Builds checkout preferences from a storefront cart and a payer, and reads
payments back for the webhook. Calls go through `http_json.request_json`;
gateway failures become `PaymentGatewayError` with a buyer-readable message.
"""

import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Tuple

from ..config import settings
from ..errors import InvalidInputError, PaymentGatewayError
from ..http_json import HttpJsonError, request_json
from ..logs import json_log

# Area codes starting with these digits are 4 digits long on a 10-digit number.
_FOUR_DIGIT_AREA_PREFIXES = ("29", "38", "37", "26")


def _digits(raw: Any) -> str:
    return re.sub(r"\D", "", str(raw or ""))


def _price(v) -> float:
    return float(Decimal(str(v or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def parse_ar_phone_number(raw: Any) -> Tuple[str, str]:
    """
    Splits an Argentinian phone number into (area_code, number).

    Country code 54 and the trunk 0 are dropped. A mobile 9 stays in front of
    the local number and a legacy 15 prefix is removed.
    """
    clean = _digits(raw)
    if clean.startswith("54"):
        clean = clean[2:]
    is_mobile = clean.startswith("9")
    if is_mobile:
        clean = clean[1:]
    if clean.startswith("0"):
        clean = clean[1:]

    if len(clean) == 10:
        if clean.startswith("11"):
            area_code, number = "11", clean[2:]
        elif clean.startswith(_FOUR_DIGIT_AREA_PREFIXES):
            area_code, number = clean[:4], clean[4:]
        else:
            area_code, number = clean[:3], clean[3:]
    elif len(clean) > 7:
        area_code, number = clean[:-7], clean[-7:]
    else:
        area_code, number = "", clean

    if is_mobile:
        number = "9" + number
        if number.startswith("915"):
            number = "9" + number[3:]
    elif number.startswith("15"):
        number = number[2:]
    return area_code, number


def infer_identification_type(raw: Any) -> Tuple[str, str]:
    digits = _digits(raw)
    return ("CUIT" if len(digits) == 11 else "DNI"), digits


def _street_number(raw: Any) -> int:
    try:
        n = int(str(raw).strip())
    except (TypeError, ValueError):
        n = 0
    if n <= 0:
        raise InvalidInputError(
            f'El número de calle "{raw}" no es válido. Debe ser un número mayor que cero.',
            field="street_number",
        )
    return n


def build_preference_items(cart: Iterable[dict], shipping_cost=0, currency: Optional[str] = None) -> list[dict]:
    currency = currency or settings.mp_currency_id
    items = [
        {
            "id": str(it["id"]),
            "title": it.get("name") or "",
            "quantity": int(Decimal(str(it.get("quantity") or 0))),
            "unit_price": _price(it.get("unit_price")),
            "currency_id": currency,
        }
        for it in cart
    ]
    if Decimal(str(shipping_cost or 0)) > 0:
        items.append(
            {
                "id": "shipping",
                "title": "Costo de Envío",
                "quantity": 1,
                "unit_price": _price(shipping_cost),
                "currency_id": currency,
            }
        )
    return items


def build_preference(
    items: list[dict],
    payer: dict,
    external_reference: str,
    *,
    storefront_url: Optional[str] = None,
    notification_url: Optional[str] = None,
) -> dict:
    street_number = _street_number(payer.get("street_number"))
    area_code, number = parse_ar_phone_number(payer.get("phone"))
    id_type, id_number = infer_identification_type(payer.get("dni"))
    base = (storefront_url or settings.storefront_url).rstrip("/")
    pref = {
        "items": items,
        "payer": {
            "name": payer.get("name"),
            "surname": payer.get("surname"),
            "email": payer.get("email"),
            "phone": {"area_code": area_code, "number": number},
            "identification": {"type": id_type, "number": id_number},
            "address": {
                "street_name": payer.get("street_name"),
                "street_number": street_number,
                "zip_code": payer.get("zip_code"),
            },
        },
        "shipments": {
            "receiver_address": {
                "zip_code": payer.get("zip_code"),
                "street_name": payer.get("street_name"),
                "street_number": street_number,
            },
            "mode": "not_specified",
        },
        "back_urls": {
            "success": f"{base}/#/payment-success",
            "failure": f"{base}/#/payment-failure",
            "pending": f"{base}/#/payment-failure",
        },
        "auto_return": "approved",
        "statement_descriptor": settings.mp_statement_descriptor,
        "external_reference": str(external_reference or "NO_ID"),
    }
    hook = notification_url if notification_url is not None else settings.payment_webhook_url
    if hook:
        pref["notification_url"] = hook
    return pref


def _gateway_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        cause = body.get("cause")
        if isinstance(cause, list) and cause and isinstance(cause[0], dict) and cause[0].get("description"):
            return str(cause[0]["description"])
        if body.get("message"):
            return str(body["message"])
    return default


class MercadoPagoClient:
    def __init__(self, access_token: Optional[str] = None, api_url: Optional[str] = None, request=request_json):
        self.access_token = access_token if access_token is not None else settings.mp_access_token
        self.api_url = (api_url or settings.mp_api_url).rstrip("/")
        self._request = request

    def _headers(self) -> dict:
        if not self.access_token:
            raise PaymentGatewayError("payment gateway is not configured")
        return {"Authorization": f"Bearer {self.access_token}"}

    def create_preference(self, preference: dict) -> str:
        try:
            data = self._request("POST", f"{self.api_url}/checkout/preferences", body=preference, headers=self._headers())
        except HttpJsonError as e:
            json_log("warning", "payments.preference_failed", status=e.status, body=e.body)
            raise PaymentGatewayError(_gateway_message(e.body, "Failed to create preference.")) from e
        init_point = data.get("init_point") if isinstance(data, dict) else None
        if not init_point:
            raise PaymentGatewayError("Failed to create preference.")
        json_log("info", "payments.preference_created", external_reference=preference.get("external_reference"))
        return init_point

    def get_payment(self, payment_id: str) -> dict:
        try:
            return self._request("GET", f"{self.api_url}/v1/payments/{payment_id}", headers=self._headers())
        except HttpJsonError as e:
            raise PaymentGatewayError(f"Failed to fetch payment details. Status: {e.status}") from e
