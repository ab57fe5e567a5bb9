from decimal import Decimal

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

import backend.app.routers.supplies as supplies_router

USER = {"user_id": "u1", "email": "bo@example.com", "roles": ["backoffice"]}


class _DummyCursor:
    def __init__(self, *, all_results=None, one_results=None, rowcount=1):
        self._all = list(all_results or [])
        self._one = list(one_results or [])
        self.rowcount = rowcount
        self.executed = []
        self.executed_many = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))

    def executemany(self, sql, params_seq):
        self.executed_many.append((" ".join(sql.split()), list(params_seq)))

    def fetchall(self):
        return self._all.pop(0) if self._all else []

    def fetchone(self):
        return self._one.pop(0) if self._one else None


class _Tx:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _DummyConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cur

    def transaction(self):
        return _Tx()


def _patch(monkeypatch, cur):
    monkeypatch.setattr(supplies_router, "get_conn", lambda: _DummyConn(cur))
    monkeypatch.setattr(supplies_router, "set_user_context", lambda conn, uid: None)


def test_detail_includes_linked_products(monkeypatch):
    cur = _DummyCursor(
        one_results=[{"id": "s1", "name": "Válvula 20mm"}],
        all_results=[[{"product_id": "p1"}, {"product_id": "p2"}]],
    )
    _patch(monkeypatch, cur)
    out = supplies_router.get_supply("s1", USER)
    assert out == {"supply": {"id": "s1", "name": "Válvula 20mm"}, "product_ids": ["p1", "p2"]}


def test_detail_missing_is_404(monkeypatch):
    _patch(monkeypatch, _DummyCursor())
    with pytest.raises(HTTPException) as exc:
        supplies_router.get_supply("nope", USER)
    assert exc.value.status_code == 404


def test_create_normalizes_and_links_products(monkeypatch):
    cur = _DummyCursor(one_results=[{"id": "s9"}])
    _patch(monkeypatch, cur)
    data = supplies_router.SupplyIn(
        name=" Caja kraft ",
        category="caja",
        unit="UNIDADES",
        unit_cost="12.5",
        product_ids=["p2", "p1", "p2"],
    )
    assert supplies_router.create_supply(data, USER) == {"id": "s9"}

    insert_sql, insert_params = cur.executed[0]
    assert insert_sql.startswith("INSERT INTO supplies")
    assert insert_params[:5] == ("Caja kraft", None, "CAJA", "unidades", Decimal("12.5"))
    assert cur.executed[1] == (
        "DELETE FROM product_supplies WHERE supply_id = %s AND NOT (product_id = ANY(%s::uuid[]))",
        ("s9", ["p1", "p2"]),
    )
    sql, rows = cur.executed_many[0]
    assert "ON CONFLICT (product_id, supply_id) DO NOTHING" in sql
    assert rows == [("p1", "s9"), ("p2", "s9")]


def test_create_rejects_blank_name_and_negative_cost(monkeypatch):
    _patch(monkeypatch, _DummyCursor(one_results=[{"id": "s9"}]))
    with pytest.raises(HTTPException):
        supplies_router.create_supply(supplies_router.SupplyIn(name="  "), USER)
    with pytest.raises(HTTPException):
        supplies_router.create_supply(supplies_router.SupplyIn(name="Caja", unit_cost=-1), USER)
    with pytest.raises(ValidationError):
        supplies_router.SupplyIn(name="Caja", unit="litros")


def test_patch_without_product_ids_leaves_links_alone(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    supplies_router.update_supply("s1", supplies_router.SupplyUpdate(supplier="Envases SA"), USER)
    assert cur.executed == [("UPDATE supplies SET supplier = %s WHERE id = %s", ["Envases SA", "s1"])]
    assert cur.executed_many == []


def test_patch_empty_product_ids_unlinks_everything(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    supplies_router.update_supply("s1", supplies_router.SupplyUpdate(product_ids=[]), USER)
    assert cur.executed[0] == ("SELECT 1 FROM supplies WHERE id = %s", ("s1",))
    assert cur.executed[1][1] == ("s1", [])
    assert cur.executed_many == []


def test_patch_missing_supply_is_404(monkeypatch):
    _patch(monkeypatch, _DummyCursor(rowcount=0))
    with pytest.raises(HTTPException) as exc:
        supplies_router.update_supply("nope", supplies_router.SupplyUpdate(name="Etiqueta"), USER)
    assert exc.value.status_code == 404


def test_add_stock_calls_stored_procedure(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    data = supplies_router.SupplyStockIn(quantity="500", unit_cost="3.2", lot_code="  ", purchase_date="2024-03-01")
    assert supplies_router.add_supply_stock("s1", data, USER) == {"ok": True}
    sql, params = cur.executed[0]
    assert sql == "SELECT * FROM add_supply_stock(%s, %s, %s, %s, %s)"
    assert params[0] == "s1"
    assert params[1:4] == (Decimal("500"), Decimal("3.2"), None)


def test_add_stock_rejects_non_positive_quantity(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    with pytest.raises(HTTPException) as exc:
        supplies_router.add_supply_stock("s1", supplies_router.SupplyStockIn(quantity=0, unit_cost=1), USER)
    assert exc.value.status_code == 400
    assert cur.executed == []
