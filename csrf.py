import time
from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer

from config import get_settings

TOKEN_MAX_AGE_SECS = 2 * 3600


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="ledger-form")


def _resolve_user(user_id: Optional[int]) -> int:
    return user_id if user_id is not None else get_settings().default_user_id


def generate_csrf_token(user_id: Optional[int] = None) -> str:
    return _serializer().dumps({"u": _resolve_user(user_id), "ts": int(time.time())})


def validate_csrf_token(
    token: str, user_id: Optional[int] = None, max_age_secs: int = TOKEN_MAX_AGE_SECS
) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except BadData:
        return False
    return data.get("u") == _resolve_user(user_id)
