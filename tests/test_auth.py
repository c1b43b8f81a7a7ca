import pytest
from itsdangerous import URLSafeSerializer

from auth import SessionError, issue_session_token, read_session_token


def test_session_token_round_trip():
    token = issue_session_token(42)
    assert read_session_token(token) == 42


def test_tampered_token_is_rejected():
    token = issue_session_token(42)
    with pytest.raises(SessionError):
        read_session_token("x" + token[1:])


def test_token_signed_with_other_secret_is_rejected():
    forged = URLSafeSerializer("not-the-secret", salt="fintrack-session").dumps(
        {"u": 1, "ts": 0, "exp": 4102444800}
    )
    with pytest.raises(SessionError):
        read_session_token(forged)


def test_expired_token_is_rejected():
    token = issue_session_token(7, max_age_hours=-1)
    with pytest.raises(SessionError, match="expired"):
        read_session_token(token)
