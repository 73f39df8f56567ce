# cloudguard/auth/decorators.py

from __future__ import annotations

from functools import wraps
from typing import Callable, Optional

from flask import request, jsonify, g, current_app

from cloudguard.extensions import db
from cloudguard.models import User
from .tokens import DEFAULT_MAX_AGE, verify_access_token


def get_bearer_token() -> Optional[str]:
    auth = request.headers.get("Authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return None


def require_auth(fn: Callable):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = get_bearer_token()
        if not token:
            return jsonify(error="missing Authorization: Bearer <token>"), 401

        uid = verify_access_token(
            secret_key=current_app.config["SECRET_KEY"],
            token=token,
            max_age_seconds=int(current_app.config.get("AUTH_TOKEN_MAX_AGE", DEFAULT_MAX_AGE)),
        )
        if not uid:
            return jsonify(error="invalid or expired token"), 401

        user = db.session.get(User, uid)
        if not user:
            return jsonify(error="user not found"), 401

        g.current_user = user
        g.current_user_id = int(user.id)

        return fn(*args, **kwargs)

    return wrapper


def current_user_id() -> int:
    """Get current user ID from context."""
    return int(getattr(g, "current_user_id", g.current_user.id))
