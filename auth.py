import time
from typing import Optional

from fastapi import HTTPException, Request, status
from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


SESSION_COOKIE = "fintrack_session"


class SessionError(Exception):
    pass


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.session_secret, salt="fintrack-session")


def issue_session_token(user_id: int, max_age_hours: Optional[int] = None) -> str:
    if max_age_hours is None:
        max_age_hours = get_settings().session_max_age_hours
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"u": user_id, "ts": timestamp, "exp": expiry}

    return _serializer().dumps(token_data)


def read_session_token(token: str) -> int:
    try:
        data = _serializer().loads(token)
    except BadSignature as exc:
        raise SessionError("Invalid session") from exc

    user_id = data.get("u")
    if not isinstance(user_id, int) or user_id <= 0:
        raise SessionError("Invalid session")

    if int(time.time()) > data.get("exp", 0):
        raise SessionError("Session expired")

    return user_id


def current_user_id(request: Request) -> int:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        return read_session_token(token)
    except SessionError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc
