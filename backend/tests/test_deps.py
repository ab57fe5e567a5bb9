import pytest

import backend.app.deps as deps
from backend.app.errors import ForbiddenError, UnauthenticatedError
from backend.app.session import Profile


class _Client:
    def __init__(self, user=None, error=None):
        self.user = user
        self.error = error

    def get_user(self, token):
        if self.error:
            raise self.error
        return self.user


def test_extract_bearer():
    assert deps._extract_bearer("Bearer abc") == "abc"
    assert deps._extract_bearer("bearer  abc ") == "abc"
    assert deps._extract_bearer("Basic abc") is None
    assert deps._extract_bearer(None) is None


def test_resolve_session_states():
    assert deps.resolve_session(None).status == "anonymous"

    bad = deps.resolve_session("t", client=_Client(error=UnauthenticatedError("invalid JWT")))
    assert (bad.status, bad.reason) == ("error", "invalid JWT")

    orphan = deps.resolve_session("t", client=_Client(user={"id": "u1"}), profile_loader=lambda uid: None)
    assert orphan.reason == "profile not found"

    ok = deps.resolve_session(
        "t", client=_Client(user={"id": "u1"}), profile_loader=lambda uid: Profile(uid, "a@b.c", ["seller"])
    )
    assert ok.is_authenticated
    assert ok.roles == ["seller"]


def test_current_user_and_view_guard():
    session = deps.resolve_session(
        "t", client=_Client(user={"id": "u1"}), profile_loader=lambda uid: Profile(uid, "a@b.c", ["backoffice"])
    )
    user = deps.get_current_user(session)
    assert user == {"user_id": "u1", "email": "a@b.c", "roles": ["backoffice"]}
    assert deps.require_view("stock")(user) is user
    with pytest.raises(ForbiddenError) as exc:
        deps.require_view("users")(user)
    assert exc.value.fields == {"view": "users"}

    with pytest.raises(UnauthenticatedError):
        deps.get_current_user(deps.resolve_session(None))


class _DummyCursor:
    def __init__(self, row):
        self._row = row
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

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


def test_load_profile_sets_user_context(monkeypatch):
    cur = _DummyCursor({"id": "u1", "email": None, "roles": ["client"]})
    seen = []
    monkeypatch.setattr(deps, "get_conn", lambda: _DummyConn(cur))
    monkeypatch.setattr(deps, "set_user_context", lambda conn, uid: seen.append(uid))
    assert deps.load_profile("u1") == Profile("u1", "", ["client"])
    assert seen == ["u1"]
    assert cur.executed[0][1] == ("u1",)
