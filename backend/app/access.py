"""
Role-gated views.

One declarative table maps each view to the roles allowed to use it. The same
`is_allowed` check guards API routes (`deps.require_view`) and filters the
navigation menu, so role lists are never duplicated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

SUPERADMIN = "superadmin"
SELLER = "seller"
BACKOFFICE = "backoffice"
ANALYST = "analyst"
CLIENT = "client"
COMEX = "comex"
COMEX_PENDING = "comex_pending"

ALL_ROLES = frozenset({SUPERADMIN, SELLER, BACKOFFICE, ANALYST, CLIENT, COMEX, COMEX_PENDING})


@dataclass(frozen=True)
class View:
    key: str
    path: str
    label: str
    roles: FrozenSet[str]
    in_menu: bool = True


def _v(key: str, path: str, label: str, roles: Iterable[str], in_menu: bool = True) -> View:
    return View(key=key, path=path, label=label, roles=frozenset(roles), in_menu=in_menu)


VIEWS: dict[str, View] = {
    v.key: v
    for v in (
        _v("dashboard", "/", "Dashboard", {SUPERADMIN, SELLER, BACKOFFICE, ANALYST}),
        _v("product_statistics", "/product-statistics", "Product statistics", {SUPERADMIN, ANALYST}),
        _v("sales", "/sales", "Sales", {SUPERADMIN, SELLER, ANALYST}),
        _v("sales_create", "/sales/new", "New sale", {SUPERADMIN, SELLER}, in_menu=False),
        _v("products", "/products", "Products", {SUPERADMIN, BACKOFFICE, SELLER, ANALYST}),
        _v("product_dashboard", "/products/:id/dashboard", "Product dashboard", {SUPERADMIN, BACKOFFICE, ANALYST}, in_menu=False),
        _v("stock", "/stock/products", "Stock", {SUPERADMIN, BACKOFFICE}),
        _v("warehouses", "/stock/warehouses", "Warehouses", {SUPERADMIN, BACKOFFICE}),
        _v("stock_transfers", "/stock/transfers", "Stock transfers", {SUPERADMIN, BACKOFFICE}),
        _v("supplies", "/stock/supplies", "Supplies", {SUPERADMIN, BACKOFFICE}),
        _v("clients", "/clients", "Clients", {SUPERADMIN, SELLER, ANALYST}),
        _v("prices", "/prices", "Prices", {SUPERADMIN, BACKOFFICE, SELLER, ANALYST}),
        _v("comex", "/comex", "COMEX", {SUPERADMIN, COMEX}),
        _v("users", "/users", "Users", {SUPERADMIN}),
        _v("price_lists", "/price-lists", "Price lists", {SUPERADMIN}),
        _v("knowledge_base", "/knowledge-base", "Knowledge base", {SUPERADMIN, SELLER, BACKOFFICE, ANALYST}),
        _v("my_price_list", "/my-list", "My price list", {CLIENT}),
        _v("comex_waiting", "/awaiting-approval", "Awaiting approval", {COMEX_PENDING}, in_menu=False),
    )
}

PUBLIC_LANDING = "/public-list"


def is_allowed(roles: Optional[Iterable[str]], view_key: str) -> bool:
    view = VIEWS.get(view_key)
    if view is None:
        return False
    return bool(view.roles.intersection(roles or ()))


def menu_for(roles: Optional[Iterable[str]]) -> List[dict]:
    roles = frozenset(roles or ())
    return [
        {"key": v.key, "path": v.path, "label": v.label}
        for v in VIEWS.values()
        if v.in_menu and is_allowed(roles, v.key)
    ]


def landing_path(roles: Optional[Iterable[str]]) -> str:
    roles = frozenset(roles or ())
    if not roles:
        return PUBLIC_LANDING
    # Pending COMEX accounts see nothing else until approved.
    if COMEX_PENDING in roles:
        return VIEWS["comex_waiting"].path
    if CLIENT in roles:
        return VIEWS["my_price_list"].path
    if COMEX in roles and SUPERADMIN not in roles:
        return VIEWS["comex"].path
    return VIEWS["dashboard"].path
