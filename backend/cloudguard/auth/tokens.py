# cloudguard/auth/tokens.py
"""
Signed bearer tokens for the API. A token carries only the user id and is
valid for AUTH_TOKEN_MAX_AGE seconds (default 8 hours).
"""
from __future__ import annotations

from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

DEFAULT_MAX_AGE = 60 * 60 * 8
TOKEN_SALT = "cloudguard-auth"


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)


def create_access_token(*, secret_key: str, user_id: int) -> str:
    return _serializer(secret_key).dumps({"uid": int(user_id)})


def verify_access_token(
    *, secret_key: str, token: str, max_age_seconds: int = DEFAULT_MAX_AGE
) -> Optional[int]:
    """Return the user id inside ``token``, or None if it is forged, malformed or expired."""
    try:
        data = _serializer(secret_key).loads(token, max_age=max_age_seconds)
    except BadSignature:  # SignatureExpired is a subclass
        return None
    uid = data.get("uid") if isinstance(data, dict) else None
    return int(uid) if isinstance(uid, int) else None
