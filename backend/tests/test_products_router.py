import pytest
from fastapi import HTTPException
from psycopg import errors as pg_errors

import backend.app.routers.products as products_router

USER = {"user_id": "u1", "email": "bo@example.com", "roles": ["backoffice"]}


class _DummyCursor:
    def __init__(self, *, row=None, rowcount=1, raise_on_execute=None):
        self._row = row
        self.rowcount = rowcount
        self._raise = raise_on_execute
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))
        if self._raise is not None:
            raise self._raise

    def fetchone(self):
        return self._row


class _DummyConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cur


def _patch(monkeypatch, cur):
    monkeypatch.setattr(products_router, "get_conn", lambda: _DummyConn(cur))
    monkeypatch.setattr(products_router, "set_user_context", lambda conn, uid: None)


def test_barcode_lookup_returns_product_with_stock(monkeypatch):
    row = {"id": "p1", "barcode": "7791234567890", "name": "Perla Rosa 100ml", "total_stock": 12}
    cur = _DummyCursor(row=row)
    _patch(monkeypatch, cur)
    assert products_router.get_product_by_barcode(" 7791234567890 ", USER) == {"product": row}
    sql, params = cur.executed[0]
    assert "WHERE p.barcode = %s GROUP BY p.id" in sql
    assert params == ("7791234567890",)


def test_unknown_barcode_is_404(monkeypatch):
    _patch(monkeypatch, _DummyCursor(row=None))
    with pytest.raises(HTTPException) as exc:
        products_router.get_product_by_barcode("000", USER)
    assert exc.value.status_code == 404


def test_blank_barcode_is_400_without_query(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    with pytest.raises(HTTPException) as exc:
        products_router.get_product_by_barcode("   ", USER)
    assert exc.value.status_code == 400
    assert cur.executed == []


def test_duplicate_barcode_on_create_is_409(monkeypatch):
    _patch(monkeypatch, _DummyCursor(raise_on_execute=pg_errors.UniqueViolation("duplicate key")))
    with pytest.raises(HTTPException) as exc:
        products_router.create_product(products_router.ProductIn(name="Perla", barcode="779"), USER)
    assert exc.value.status_code == 409


def test_negative_price_is_rejected_before_the_database(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    with pytest.raises(HTTPException) as exc:
        products_router.update_product("p1", products_router.ProductUpdate(price_public=-1), USER)
    assert exc.value.status_code == 400
    assert cur.executed == []
