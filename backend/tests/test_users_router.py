import pytest
from fastapi import HTTPException
from pydantic import ValidationError

import backend.app.routers.users as users_router

USER = {"user_id": "admin-1", "email": "admin@example.com", "roles": ["superadmin"]}


class _DummyCursor:
    def __init__(self, *, rows=None, rowcount=1):
        self._rows = rows or []
        self.rowcount = rowcount
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))

    def fetchall(self):
        return self._rows


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
    monkeypatch.setattr(users_router, "get_conn", lambda: _DummyConn(cur))
    monkeypatch.setattr(users_router, "set_user_context", lambda conn, uid: None)


def test_cannot_change_own_roles(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    with pytest.raises(HTTPException) as exc:
        users_router.update_roles("admin-1", users_router.RolesIn(roles=["seller"]), USER)
    assert exc.value.status_code == 400
    assert cur.executed == []


def test_roles_are_normalized_and_cast(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    out = users_router.update_roles("u2", users_router.RolesIn(roles=["Seller", "analyst", "seller"]), USER)
    assert out == {"ok": True, "roles": ["analyst", "seller"]}
    assert cur.executed[0] == (
        "UPDATE profiles SET roles = %s::app_role[] WHERE id = %s",
        (["analyst", "seller"], "u2"),
    )


def test_unknown_user_is_404(monkeypatch):
    _patch(monkeypatch, _DummyCursor(rowcount=0))
    with pytest.raises(HTTPException) as exc:
        users_router.update_roles("ghost", users_router.RolesIn(roles=["client"]), USER)
    assert exc.value.status_code == 404


def test_unknown_role_is_rejected():
    with pytest.raises(ValidationError):
        users_router.RolesIn(roles=["owner"])


def test_list_users_flattens_roles(monkeypatch):
    cur = _DummyCursor(rows=[{"id": "u2", "email": "a@b.c", "roles": None}])
    _patch(monkeypatch, cur)
    assert users_router.list_users(USER) == {"users": [{"id": "u2", "email": "a@b.c", "roles": []}]}
