"""Observer Gate のテスト"""

import pytest

from livetail.errors import AuthorizationRejected
from livetail.gate import DEFAULT_COOKIE_NAME, ObserverGate, generate_secret


def test_sign_and_unsign():
    gate = ObserverGate("secret")
    token = gate.sign("session-1")
    assert token.startswith("s:session-1.")
    assert not token.endswith("=")
    assert gate.unsign(token) == "session-1"


def test_unsign_rejects_bad_tokens():
    gate = ObserverGate("secret")
    token = gate.sign("session-1")
    assert gate.unsign(token[:-1] + ("A" if token[-1] != "A" else "B")) is None
    assert gate.unsign("session-1") is None
    assert gate.unsign("s:nodot") is None
    assert gate.unsign("") is None
    assert ObserverGate("other").unsign(token) is None


def test_check_accepts_issued_cookie():
    gate = ObserverGate(generate_secret())
    token = gate.issue()
    session_id = gate.check(f"theme=dark; {DEFAULT_COOKIE_NAME}={token}")
    assert token == gate.sign(session_id)


@pytest.mark.parametrize(
    "header, reason",
    [
        (None, "No cookie in header"),
        ("", "No cookie in header"),
        ("theme=dark", "Session cookie not provided"),
        (f"{DEFAULT_COOKIE_NAME}=s:abc.forged", "Invalid cookie"),
        (f"{DEFAULT_COOKIE_NAME}=abc", "Invalid cookie"),
    ],
)
def test_check_rejections(header, reason):
    gate = ObserverGate("secret")
    with pytest.raises(AuthorizationRejected) as exc_info:
        gate.check(header)
    assert exc_info.value.reason == reason


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        ObserverGate("")
