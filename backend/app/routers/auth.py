from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from typing import Literal, Optional

from ..access import landing_path, menu_for
from ..auth_client import auth_client
from ..deps import _extract_bearer, get_session, load_profile
from ..errors import UnauthenticatedError
from ..logs import json_log
from ..session import SessionState

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginIn(BaseModel):
    email: str
    password: str


class SignupIn(BaseModel):
    email: str
    password: str
    full_name: Optional[str] = None
    # COMEX accounts start as pending until a superadmin approves the access request.
    account_type: Literal["client", "comex"] = "client"
    company_name: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


def _session_payload(session: SessionState) -> dict:
    out = session.to_dict()
    out["landing_path"] = landing_path(session.roles)
    out["menu"] = menu_for(session.roles)
    return out


@router.post("/login")
def login(data: LoginIn):
    tokens = auth_client.sign_in_with_password(data.email.strip().lower(), data.password)
    session = SessionState().begin(tokens["access_token"])
    user_id = str((tokens.get("user") or {}).get("id") or auth_client.get_user(tokens["access_token"])["id"])
    profile = load_profile(user_id)
    if profile is None:
        session.fail("profile not found")
        json_log("warning", "auth.login_no_profile", user_id=user_id)
        raise UnauthenticatedError("profile not found")
    session.authenticate(profile)
    json_log("info", "auth.login", user_id=user_id)
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens.get("refresh_token"),
        "expires_in": tokens.get("expires_in"),
        **_session_payload(session),
    }


@router.post("/signup")
def signup(data: SignupIn):
    roles = ["comex_pending"] if data.account_type == "comex" else ["client"]
    metadata = {"roles": roles}
    for k in ("full_name", "company_name", "country", "phone"):
        v = getattr(data, k)
        if v:
            metadata[k] = v.strip()
    out = auth_client.sign_up(data.email.strip().lower(), data.password, metadata)
    user = out.get("user") or out
    json_log("info", "auth.signup", user_id=user.get("id"), roles=roles)
    return {"user_id": user.get("id"), "roles": roles, "landing_path": landing_path(roles)}


@router.post("/logout")
def logout(authorization: Optional[str] = Header(None)):
    token = _extract_bearer(authorization)
    if token:
        auth_client.sign_out(token)
    return {"ok": True, **_session_payload(SessionState())}


@router.get("/me")
def me(session: SessionState = Depends(get_session)):
    return _session_payload(session)


@router.get("/menu")
def menu(session: SessionState = Depends(get_session)):
    return {"menu": menu_for(session.roles), "landing_path": landing_path(session.roles)}
