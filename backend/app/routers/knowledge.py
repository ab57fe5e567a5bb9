from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional

from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..validation import KnowledgeCategory

router = APIRouter(prefix="/knowledge", tags=["knowledge"])


class KnowledgeIn(BaseModel):
    question: str
    answer: str
    category: KnowledgeCategory = "General"


class KnowledgeUpdate(BaseModel):
    question: Optional[str] = None
    answer: Optional[str] = None
    category: Optional[KnowledgeCategory] = None


def _required_text(values: dict, *keys: str):
    for k in keys:
        if k in values:
            values[k] = (values[k] or "").strip()
            if not values[k]:
                raise HTTPException(status_code=400, detail=f"{k} is required")


@router.get("")
def list_items(q: Optional[str] = None, user=Depends(require_view("knowledge_base"))):
    sql = "SELECT id, question, answer, category, created_at, updated_at FROM knowledge_base"
    params: list = []
    term = (q or "").strip()
    if term:
        sql += " WHERE question ILIKE %s OR answer ILIKE %s OR category ILIKE %s"
        like = f"%{term}%"
        params = [like, like, like]
    sql += " ORDER BY created_at DESC"
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return {"items": cur.fetchall()}


@router.post("")
def create_item(data: KnowledgeIn, user=Depends(require_view("knowledge_base"))):
    values = data.model_dump()
    _required_text(values, "question", "answer")
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO knowledge_base (id, question, answer, category)
                VALUES (gen_random_uuid(), %s, %s, %s)
                RETURNING id
                """,
                (values["question"], values["answer"], values["category"]),
            )
            kid = cur.fetchone()["id"]
    json_log("info", "knowledge.created", item_id=kid, category=values["category"])
    return {"id": kid}


@router.patch("/{item_id}")
def update_item(item_id: str, data: KnowledgeUpdate, user=Depends(require_view("knowledge_base"))):
    patch = {k: getattr(data, k) for k in getattr(data, "model_fields_set", set())}
    _required_text(patch, "question", "answer")
    if "category" in patch and patch["category"] is None:
        patch["category"] = "General"
    if not patch:
        return {"ok": True}
    fields = [f"{k} = %s" for k in patch] + ["updated_at = now()"]
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute(f"UPDATE knowledge_base SET {', '.join(fields)} WHERE id = %s", [*patch.values(), item_id])
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="item not found")
    return {"ok": True}


@router.delete("/{item_id}")
def delete_item(item_id: str, user=Depends(require_view("knowledge_base"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute("DELETE FROM knowledge_base WHERE id = %s", (item_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="item not found")
    json_log("info", "knowledge.deleted", item_id=item_id)
    return {"ok": True}
