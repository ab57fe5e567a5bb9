"""Per-product profitability and sales history for the product dashboard."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from .pricing_rules import _dec, q_money


def _months_back(d: date, months: int) -> date:
    y, m = divmod(d.year * 12 + (d.month - 1) - months, 12)
    day = min(d.day, 28)
    return date(y, m + 1, day)


def product_dashboard(
    product: dict,
    sales: Iterable[dict],
    supplies: Iterable[dict],
    lots: Iterable[dict],
    *,
    today: Optional[date] = None,
) -> dict:
    """
    sales: rows with quantity, unit_price, sale_date.
    supplies: rows with id, name, unit, quantity (per product unit), unit_cost.
    lots: rows with production_cost, created_at.

    The production cost of the most recent lot is taken as a per-unit cost.
    """
    today = today or date.today()
    sales = list(sales)

    supplies_detail: List[dict] = [
        {
            "id": s["id"],
            "name": s["name"],
            "unit": s.get("unit"),
            "quantity": _dec(s.get("quantity")),
            "total_cost": q_money(_dec(s.get("quantity")) * _dec(s.get("unit_cost"))),
        }
        for s in supplies
    ]
    supplies_cost = sum((s["total_cost"] for s in supplies_detail), Decimal("0"))

    recent = sorted(lots, key=lambda l: str(l.get("created_at") or ""), reverse=True)
    lab_cost = _dec(recent[0].get("production_cost")) if recent else Decimal("0")

    total_cost = q_money(supplies_cost + lab_cost)
    public = _dec(product.get("price_public"))
    net = q_money(public - total_cost)
    margin = q_money(net / public * 100) if public > 0 else Decimal("0.00")

    units = sum((int(s["quantity"]) for s in sales), 0)
    revenue = q_money(sum((_dec(s["quantity"]) * _dec(s["unit_price"]) for s in sales), Decimal("0")))
    avg_price = q_money(revenue / units) if units > 0 else Decimal("0.00")
    last_sale = max((s["sale_date"] for s in sales), default=None)

    since_day = today - timedelta(days=30)
    since_month = _months_back(today, 12)
    per_day: dict = {}
    per_month: dict = {}
    per_year: dict = {}
    for s in sales:
        d = s["sale_date"]
        q = int(s["quantity"])
        per_year[str(d.year)] = per_year.get(str(d.year), 0) + q
        if d >= since_month:
            key = f"{d.year}-{d.month:02d}"
            per_month[key] = per_month.get(key, 0) + q
        if d >= since_day:
            per_day[d.isoformat()] = per_day.get(d.isoformat(), 0) + q

    return {
        "product": product,
        "supplies_cost": q_money(supplies_cost),
        "recent_lab_cost": q_money(lab_cost),
        "total_cost": total_cost,
        "net_profit": net,
        "margin_pct": margin,
        "units_sold": units,
        "revenue": revenue,
        "average_sale_price": avg_price,
        "last_sale_date": last_sale,
        "supplies": supplies_detail,
        "sales_per_day": dict(sorted(per_day.items())),
        "sales_per_month": dict(sorted(per_month.items())),
        "sales_per_year": dict(sorted(per_year.items())),
    }
