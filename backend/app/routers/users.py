from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List

from ..db import get_conn, set_user_context
from ..deps import require_view
from ..logs import json_log
from ..rpc import call_rpc
from ..validation import AppRole

router = APIRouter(prefix="/users", tags=["users"])


class RolesIn(BaseModel):
    roles: List[AppRole]


@router.get("")
def list_users(user=Depends(require_view("users"))):
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            rows = call_rpc(cur, "list_users_as_admin", fetch="all") or []
    return {"users": [{"id": r["id"], "email": r["email"], "roles": list(r.get("roles") or [])} for r in rows]}


@router.put("/{user_id}/roles")
def update_roles(user_id: str, data: RolesIn, user=Depends(require_view("users"))):
    if user_id == user["user_id"]:
        raise HTTPException(status_code=400, detail="you cannot change your own roles")
    roles = sorted(set(data.roles))
    with get_conn() as conn:
        set_user_context(conn, user["user_id"])
        with conn.cursor() as cur:
            cur.execute("UPDATE profiles SET roles = %s::app_role[] WHERE id = %s", (roles, user_id))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="user not found")
    json_log("info", "users.roles_updated", user_id=user_id, roles=roles)
    return {"ok": True, "roles": roles}
