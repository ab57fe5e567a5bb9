import pytest

import backend.app.payments.mercadopago as mercadopago_module
from backend.app.errors import InvalidInputError, PaymentGatewayError
from backend.app.http_json import HttpJsonError
from backend.app.payments.mercadopago import (
    MercadoPagoClient,
    build_preference,
    build_preference_items,
    infer_identification_type,
    parse_ar_phone_number,
)

PAYER = {
    "name": "Ana",
    "surname": "Paz",
    "email": "ana@example.com",
    "phone": "+54 9 11 1234-5678",
    "dni": "30111222",
    "street_name": "Belgrano",
    "street_number": "742",
    "zip_code": "5000",
    "city": "Córdoba",
    "province": "Córdoba",
}


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("+54 9 11 1234-5678", ("11", "912345678")),
        ("011 4123-4567", ("11", "41234567")),
        ("2944 123456", ("2944", "123456")),
        ("351 4123456", ("351", "4123456")),
        ("9 351 1512345", ("351", "912345")),
        ("3511512345", ("351", "12345")),
        ("4123456", ("", "4123456")),
        (None, ("", "")),
    ],
)
def test_parse_ar_phone_number(raw, expected):
    assert parse_ar_phone_number(raw) == expected


def test_identification_type_by_length():
    assert infer_identification_type("20-30111222-3") == ("CUIT", "20301112223")
    assert infer_identification_type("30.111.222") == ("DNI", "30111222")


def test_preference_items_add_shipping_line():
    items = build_preference_items(
        [{"id": "p1", "name": "Crema", "quantity": 2, "unit_price": "10.005"}], shipping_cost="1500", currency="ARS"
    )
    assert items[0] == {"id": "p1", "title": "Crema", "quantity": 2, "unit_price": 10.01, "currency_id": "ARS"}
    assert items[1]["id"] == "shipping"
    assert items[1]["title"] == "Costo de Envío"
    assert items[1]["unit_price"] == 1500.0
    assert len(build_preference_items([], shipping_cost=0, currency="ARS")) == 0


def test_build_preference_shape():
    pref = build_preference(
        [], PAYER, "sale-1", storefront_url="https://shop.example/", notification_url="https://api.example/checkout/webhook"
    )
    assert pref["external_reference"] == "sale-1"
    assert pref["payer"]["phone"] == {"area_code": "11", "number": "912345678"}
    assert pref["payer"]["identification"] == {"type": "DNI", "number": "30111222"}
    assert pref["payer"]["address"]["street_number"] == 742
    assert pref["shipments"]["mode"] == "not_specified"
    assert pref["back_urls"] == {
        "success": "https://shop.example/#/payment-success",
        "failure": "https://shop.example/#/payment-failure",
        "pending": "https://shop.example/#/payment-failure",
    }
    assert pref["auto_return"] == "approved"
    assert pref["notification_url"] == "https://api.example/checkout/webhook"

    no_hook = build_preference([], PAYER, "", storefront_url="https://shop.example", notification_url="")
    assert "notification_url" not in no_hook
    assert no_hook["external_reference"] == "NO_ID"


@pytest.mark.parametrize("bad", ["0", "-3", "s/n", ""])
def test_build_preference_rejects_bad_street_number(bad):
    with pytest.raises(InvalidInputError) as exc:
        build_preference([], dict(PAYER, street_number=bad), "sale-1", storefront_url="https://shop.example")
    assert exc.value.fields["field"] == "street_number"
    assert "no es válido" in exc.value.message


def test_create_preference_returns_init_point():
    calls = []

    def _request(method, url, *, body=None, headers=None):
        calls.append((method, url, headers))
        return {"init_point": "https://mp.example/checkout/123"}

    client = MercadoPagoClient(access_token="TEST-1", api_url="https://mp.example", request=_request)
    assert client.create_preference({"external_reference": "s1"}) == "https://mp.example/checkout/123"
    assert calls == [("POST", "https://mp.example/checkout/preferences", {"Authorization": "Bearer TEST-1"})]


def test_create_preference_surfaces_gateway_cause():
    def _request(method, url, *, body=None, headers=None):
        raise HttpJsonError(400, {"message": "bad", "cause": [{"description": "payer.email invalid"}]}, url)

    client = MercadoPagoClient(access_token="TEST-1", api_url="https://mp.example", request=_request)
    with pytest.raises(PaymentGatewayError) as exc:
        client.create_preference({})
    assert exc.value.message == "payer.email invalid"
    assert exc.value.status_code == 502


def test_get_payment_error_and_missing_token():
    def _request(method, url, *, body=None, headers=None):
        raise HttpJsonError(404, {}, url)

    client = MercadoPagoClient(access_token="TEST-1", api_url="https://mp.example", request=_request)
    with pytest.raises(PaymentGatewayError) as exc:
        client.get_payment("77")
    assert exc.value.message == "Failed to fetch payment details. Status: 404"

    with pytest.raises(PaymentGatewayError):
        MercadoPagoClient(access_token="", api_url="https://mp.example", request=_request).get_payment("77")


def test_failed_preference_logs_warning_level(monkeypatch):
    logged = []
    monkeypatch.setattr(mercadopago_module, "json_log", lambda level, event, **fields: logged.append((level, event)))

    def _request(method, url, *, body=None, headers=None):
        raise HttpJsonError(500, {}, url)

    client = MercadoPagoClient(access_token="TEST-1", api_url="https://mp.example", request=_request)
    with pytest.raises(PaymentGatewayError):
        client.create_preference({})
    assert logged == [("warning", "payments.preference_failed")]


def test_non_object_preference_reply_is_a_gateway_error():
    client = MercadoPagoClient(access_token="TEST-1", api_url="https://mp.example", request=lambda *a, **k: ["x"])
    with pytest.raises(PaymentGatewayError) as exc:
        client.create_preference({})
    assert exc.value.message == "Failed to create preference."


def test_module_has_no_shared_client_instance():
    assert not hasattr(mercadopago_module, "mercadopago")
