from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

MONEY_Q = Decimal("0.01")


def q_money(v) -> Decimal:
    return (Decimal(str(v or 0))).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def _dec(v) -> Decimal:
    return Decimal(str(v or 0))


def price_for_quantity(product: dict, quantity: int) -> Decimal:
    """
    Storefront tier price: wholesale once the wholesale minimum is reached,
    then commerce, otherwise public. A tier without a minimum or without a
    positive price never applies.
    """
    public = _dec(product.get("price_public"))
    commerce = _dec(product.get("price_commerce"))
    wholesale = _dec(product.get("price_wholesale"))
    min_commerce = product.get("min_qty_commerce")
    min_wholesale = product.get("min_qty_wholesale")
    if min_wholesale is not None and quantity >= int(min_wholesale) and wholesale > 0:
        return wholesale
    if min_commerce is not None and quantity >= int(min_commerce) and commerce > 0:
        return commerce
    return public


def price_for_buyer(product: dict, price_list_name: Optional[str]) -> Decimal:
    # Manual sales price by the client's price list name; no list means public.
    name = (price_list_name or "").strip().lower()
    if "mayorista" in name or "wholesale" in name:
        return _dec(product.get("price_wholesale"))
    if "comercio" in name or "commerce" in name:
        return _dec(product.get("price_commerce"))
    return _dec(product.get("price_public"))


def line_subtotal(pairs: Iterable[tuple]) -> Decimal:
    """pairs: (quantity, unit_price)"""
    return q_money(sum((_dec(q) * _dec(p) for q, p in pairs), Decimal("0")))


def sale_totals(subtotal, *, apply_tax: bool, tax_rate) -> tuple[Decimal, Decimal, Decimal]:
    sub = q_money(subtotal)
    tax = q_money(sub * _dec(tax_rate)) if apply_tax else Decimal("0.00")
    return sub, tax, q_money(sub + tax)


def checkout_totals(subtotal, *, payment_method: str, shipping_cost, discount_rate) -> tuple[Decimal, Decimal, Decimal]:
    """Returns (subtotal, transfer discount, total). Bank transfers get a discount on the subtotal only."""
    sub = q_money(subtotal)
    discount = q_money(sub * _dec(discount_rate)) if payment_method == "transfer" else Decimal("0.00")
    return sub, discount, q_money(sub - discount + _dec(shipping_cost))


@dataclass(frozen=True)
class ComexQuote:
    product_id: str
    name: str
    line: str
    price_wholesale: Decimal
    price_usd: Decimal
    box_volume_m3: Decimal
    weight_per_box_kg: Decimal
    boxes_per_pallet: int


# Pallet footprint is 1 m x 1 m.
PALLET_AREA_CM2 = 100 * 100


def comex_quote(product: dict, usd_rate) -> ComexQuote:
    rate = _dec(usd_rate)
    wholesale = _dec(product.get("price_wholesale"))
    price_usd = q_money(wholesale / rate) if rate > 0 else Decimal("0.00")

    length = _dec(product.get("box_length_cm"))
    width = _dec(product.get("box_width_cm"))
    height = _dec(product.get("box_height_cm"))
    weight = _dec(product.get("product_weight_kg"))
    per_box = _dec(product.get("products_per_box"))
    has_logistics = all(v > 0 for v in (length, width, height, weight, per_box))

    volume = (length * width * height / Decimal(1_000_000)).quantize(Decimal("0.000001")) if has_logistics else Decimal("0")
    box_weight = q_money(weight * per_box) if has_logistics else Decimal("0")
    per_pallet = int(Decimal(PALLET_AREA_CM2) // (length * width)) if has_logistics else 0

    return ComexQuote(
        product_id=str(product.get("id")),
        name=product.get("name") or "",
        line=product.get("line") or "General",
        price_wholesale=wholesale,
        price_usd=price_usd,
        box_volume_m3=volume,
        weight_per_box_kg=box_weight,
        boxes_per_pallet=per_pallet,
    )


def merge_client_prices(products: Iterable[dict], list_prices: dict) -> list[dict]:
    """
    A client's own list: the price from their price list where the product is
    on it, the public price otherwise.
    """
    out = []
    for p in products:
        pid = str(p["id"])
        price = list_prices.get(pid)
        out.append(
            {
                "product_id": pid,
                "product_name": p.get("name"),
                "line": p.get("line"),
                "price": _dec(price) if price is not None else _dec(p.get("price_public")),
            }
        )
    return out
