from fastapi import Depends, Header
from typing import Callable, Optional

from .access import is_allowed
from .auth_client import AuthClient, auth_client
from .db import get_conn, set_user_context
from .errors import AppError, ForbiddenError, UnauthenticatedError
from .session import Profile, SessionState


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def load_profile(user_id: str) -> Optional[Profile]:
    with get_conn() as conn:
        set_user_context(conn, user_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, email, roles
                FROM profiles
                WHERE id = %s
                """,
                (user_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return Profile(id=str(row["id"]), email=row["email"] or "", roles=list(row["roles"] or []))


def resolve_session(
    token: Optional[str],
    client: Optional[AuthClient] = None,
    profile_loader: Callable[[str], Optional[Profile]] = load_profile,
) -> SessionState:
    session = SessionState()
    if not token:
        return session
    session.begin(token)
    try:
        user = (client or auth_client).get_user(token)
    except AppError as e:
        return session.fail(e.message)
    profile = profile_loader(str(user["id"]))
    if profile is None:
        return session.fail("profile not found")
    return session.authenticate(profile)


def get_session(authorization: Optional[str] = Header(None)) -> SessionState:
    return resolve_session(_extract_bearer(authorization))


def get_current_user(session: SessionState = Depends(get_session)):
    if not session.is_authenticated:
        raise UnauthenticatedError(session.reason or "missing token")
    return {"user_id": session.profile.id, "email": session.profile.email, "roles": session.roles}


def require_view(view_key: str):
    def _dep(user=Depends(get_current_user)):
        if not is_allowed(user["roles"], view_key):
            raise ForbiddenError("permission denied", view=view_key)
        return user
    return _dep
