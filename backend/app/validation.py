from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_snake_str(v):
    if v is None:
        return v
    return "_".join(str(v).strip().lower().replace("-", " ").split())


# Canonical codes mirror Postgres enums in `backend/db/migrations/001_init.sql`.
SaleType = Annotated[Literal["sale", "consignment"], BeforeValidator(_to_lower_str)]
SaleStatus = Annotated[
    Literal["pending", "paid", "shipped", "cancelled", "abandoned_cart"],
    BeforeValidator(_to_snake_str),
]
SalesChannel = Annotated[
    Literal["mercado_libre", "store", "social_media", "web"],
    BeforeValidator(_to_snake_str),
]
AppRole = Annotated[
    Literal["superadmin", "seller", "backoffice", "analyst", "client", "comex", "comex_pending"],
    BeforeValidator(_to_lower_str),
]
CheckoutPaymentMethod = Annotated[Literal["mercadopago", "transfer"], BeforeValidator(_to_lower_str)]
AccessRequestStatus = Annotated[Literal["pending", "approved", "rejected"], BeforeValidator(_to_lower_str)]
CurrencyCode = Annotated[Literal["ARS", "USD", "BRL"], BeforeValidator(_to_upper_str)]


# Barcodes are scanned strings; keep a tight, printable character set.
Barcode = Annotated[
    str,
    BeforeValidator(lambda v: v if v is None else str(v).strip()),
    StringConstraints(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9._-]+$"),
]

SupplyCategory = Annotated[
    Literal["VALVULA", "ETIQUETA", "CAJA", "MATERIAL ESPECIAL", "ENVASE", "OTRO"],
    BeforeValidator(_to_upper_str),
]
SupplyUnit = Annotated[Literal["unidades", "gramos", "ml"], BeforeValidator(_to_lower_str)]
KnowledgeCategory = Annotated[
    Literal["General", "Envíos", "Pagos", "Productos", "Precios", "Políticas", "Contacto"],
    BeforeValidator(lambda v: v if v is None else (str(v).strip() or "General")),
]
