import pytest
from fastapi import HTTPException
from pydantic import ValidationError

import backend.app.routers.knowledge as knowledge_router

USER = {"user_id": "u1", "email": "seller@example.com", "roles": ["seller"]}


class _DummyCursor:
    def __init__(self, *, rows=None, row=None, rowcount=1):
        self._rows = rows or []
        self._row = row
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
    monkeypatch.setattr(knowledge_router, "get_conn", lambda: _DummyConn(cur))
    monkeypatch.setattr(knowledge_router, "set_user_context", lambda conn, uid: None)


def test_list_searches_question_answer_and_category(monkeypatch):
    cur = _DummyCursor(rows=[{"id": "k1"}])
    _patch(monkeypatch, cur)
    assert knowledge_router.list_items(" envío ", USER) == {"items": [{"id": "k1"}]}
    sql, params = cur.executed[0]
    assert "WHERE question ILIKE %s OR answer ILIKE %s OR category ILIKE %s" in sql
    assert sql.endswith("ORDER BY created_at DESC")
    assert params == ["%envío%"] * 3


def test_list_without_query_has_no_filter(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    knowledge_router.list_items(None, USER)
    assert "WHERE" not in cur.executed[0][0]
    assert cur.executed[0][1] == []


def test_create_defaults_category(monkeypatch):
    cur = _DummyCursor(row={"id": "k2"})
    _patch(monkeypatch, cur)
    out = knowledge_router.create_item(
        knowledge_router.KnowledgeIn(question=" ¿Hacen envíos? ", answer="Sí, a todo el país.", category=""),
        USER,
    )
    assert out == {"id": "k2"}
    assert cur.executed[0][1] == ("¿Hacen envíos?", "Sí, a todo el país.", "General")


def test_create_rejects_blank_answer_and_unknown_category(monkeypatch):
    _patch(monkeypatch, _DummyCursor(row={"id": "k2"}))
    with pytest.raises(HTTPException):
        knowledge_router.create_item(knowledge_router.KnowledgeIn(question="q", answer="   "), USER)
    with pytest.raises(ValidationError):
        knowledge_router.KnowledgeIn(question="q", answer="a", category="Otros")


def test_patch_bumps_updated_at(monkeypatch):
    cur = _DummyCursor()
    _patch(monkeypatch, cur)
    knowledge_router.update_item("k1", knowledge_router.KnowledgeUpdate(category="Pagos"), USER)
    assert cur.executed[0] == (
        "UPDATE knowledge_base SET category = %s, updated_at = now() WHERE id = %s",
        ["Pagos", "k1"],
    )


def test_missing_item_is_404(monkeypatch):
    _patch(monkeypatch, _DummyCursor(rowcount=0))
    with pytest.raises(HTTPException) as exc:
        knowledge_router.delete_item("nope", USER)
    assert exc.value.status_code == 404
    with pytest.raises(HTTPException) as exc:
        knowledge_router.update_item("nope", knowledge_router.KnowledgeUpdate(answer="x"), USER)
    assert exc.value.status_code == 404
