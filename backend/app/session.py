"""
Explicit per-request session state.

    anonymous -> authenticating -> authenticated(profile)
    anonymous -> authenticating -> error(reason)

A session is owned by the dependency that resolves it (`deps.get_session`)
and handed to routes explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

ANONYMOUS = "anonymous"
AUTHENTICATING = "authenticating"
AUTHENTICATED = "authenticated"
ERROR = "error"


class SessionTransitionError(RuntimeError):
    """A transition the state machine does not allow; a bug in the caller, never a client error."""


_TRANSITIONS = {
    ANONYMOUS: {AUTHENTICATING},
    AUTHENTICATING: {AUTHENTICATED, ERROR},
    # Logout or a failed refresh go back to anonymous; a retry starts over.
    AUTHENTICATED: {ANONYMOUS, AUTHENTICATING},
    ERROR: {ANONYMOUS, AUTHENTICATING},
}


@dataclass(frozen=True)
class Profile:
    id: str
    email: str
    roles: List[str] = field(default_factory=list)


@dataclass
class SessionState:
    status: str = ANONYMOUS
    profile: Optional[Profile] = None
    reason: Optional[str] = None
    access_token: Optional[str] = field(default=None, repr=False)

    def _move(self, target: str) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise SessionTransitionError(f"invalid session transition {self.status} -> {target}")
        self.status = target

    def begin(self, access_token: str) -> "SessionState":
        self._move(AUTHENTICATING)
        self.access_token = access_token
        self.profile = None
        self.reason = None
        return self

    def authenticate(self, profile: Profile) -> "SessionState":
        self._move(AUTHENTICATED)
        self.profile = profile
        return self

    def fail(self, reason: str) -> "SessionState":
        self._move(ERROR)
        self.profile = None
        self.reason = reason
        return self

    def reset(self) -> "SessionState":
        self._move(ANONYMOUS)
        self.profile = None
        self.reason = None
        self.access_token = None
        return self

    @property
    def is_authenticated(self) -> bool:
        return self.status == AUTHENTICATED and self.profile is not None

    @property
    def roles(self) -> List[str]:
        return list(self.profile.roles) if self.profile else []

    def to_dict(self) -> dict:
        out = {"status": self.status, "profile": None, "reason": self.reason}
        if self.profile:
            out["profile"] = {"id": self.profile.id, "email": self.profile.email, "roles": list(self.profile.roles)}
        return out
