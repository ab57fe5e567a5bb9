import pytest

from backend.app.errors import AppError
from backend.app.session import ANONYMOUS, AUTHENTICATED, ERROR, Profile, SessionState, SessionTransitionError


def test_session_happy_path_and_logout():
    s = SessionState().begin("tok")
    assert s.status == "authenticating"
    assert not s.is_authenticated
    s.authenticate(Profile("u1", "a@b.c", ["seller"]))
    assert s.status == AUTHENTICATED
    assert s.roles == ["seller"]
    assert s.to_dict()["profile"] == {"id": "u1", "email": "a@b.c", "roles": ["seller"]}
    s.reset()
    assert s.status == ANONYMOUS
    assert s.profile is None and s.access_token is None


def test_session_failure_keeps_reason():
    s = SessionState().begin("tok").fail("invalid token")
    assert s.status == ERROR
    assert s.reason == "invalid token"
    assert s.roles == []
    s.begin("tok2")
    assert s.reason is None


def test_invalid_transitions_are_rejected():
    with pytest.raises(SessionTransitionError):
        SessionState().authenticate(Profile("u1", "a@b.c"))
    with pytest.raises(SessionTransitionError):
        SessionState().fail("nope")
    with pytest.raises(SessionTransitionError):
        SessionState().reset()


def test_transition_errors_are_not_client_errors():
    with pytest.raises(SessionTransitionError) as exc:
        SessionState().begin("tok").begin("again")
    assert not isinstance(exc.value, AppError)
    assert "authenticating -> authenticating" in str(exc.value)
