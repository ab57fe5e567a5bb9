"""
Client for the hosted authentication service (GoTrue-compatible REST API).

Passwords and tokens are handled by the service; this backend only forwards
credentials and validates bearer tokens by asking the service who they belong to.
"""

from typing import Any, Optional

from .config import settings
from .errors import AuthServiceError, UnauthenticatedError
from .http_json import HttpJsonError, request_json


def _message(body: Any) -> str:
    if isinstance(body, dict):
        for k in ("error_description", "msg", "message", "error"):
            if body.get(k):
                return str(body[k])
    return str(body or "authentication service error")


class AuthClient:
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, request=request_json):
        self.base_url = (base_url if base_url is not None else settings.auth_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.auth_api_key
        self._request = request

    def _headers(self, access_token: Optional[str] = None) -> dict:
        h = {"apikey": self.api_key}
        if access_token:
            h["Authorization"] = f"Bearer {access_token}"
        return h

    def _call(self, method: str, path: str, *, body=None, access_token=None):
        if not self.base_url:
            raise AuthServiceError("authentication service is not configured")
        try:
            return self._request(method, f"{self.base_url}{path}", body=body, headers=self._headers(access_token))
        except HttpJsonError as e:
            if e.status in {400, 401, 403, 422}:
                raise UnauthenticatedError(_message(e.body)) from e
            raise AuthServiceError(_message(e.body)) from e

    def sign_in_with_password(self, email: str, password: str) -> dict:
        out = self._call("POST", "/token?grant_type=password", body={"email": email, "password": password})
        if not out.get("access_token"):
            raise AuthServiceError("authentication service returned no access token")
        return out

    def sign_up(self, email: str, password: str, metadata: dict) -> dict:
        return self._call("POST", "/signup", body={"email": email, "password": password, "data": metadata})

    def sign_out(self, access_token: str) -> None:
        self._call("POST", "/logout", access_token=access_token)

    def get_user(self, access_token: str) -> dict:
        user = self._call("GET", "/user", access_token=access_token)
        if not user or not user.get("id"):
            raise UnauthenticatedError("invalid token")
        return user


auth_client = AuthClient()
