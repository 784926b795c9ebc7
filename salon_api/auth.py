"""Bearer-token authentication and role checks."""
from __future__ import annotations

from functools import wraps

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.exceptions import Forbidden, Unauthorized

from .extensions import db
from .models import User

USER = "user"
HOST = "host"
ADMIN = "admin"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(payload: dict[str, object]) -> str:
    return _serializer().dumps(payload)


def get_jwt_identity() -> int | None:
    """Extract and validate user_id from the Authorization header token.

    Returns the user_id if the token is valid, None if missing or invalid.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = _serializer().loads(token, max_age=current_app.config.get("AUTH_TOKEN_MAX_AGE", 86400))
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get("user_id")


def current_user() -> User:
    user = getattr(g, "current_user", None)
    if user is None:
        raise Unauthorized("Authentication required. Please log in to continue.")
    return user


def login_required(*roles: str):
    """Require a valid bearer token and, when given, one of ``roles``."""

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user_id = get_jwt_identity()
            if not user_id:
                raise Unauthorized("Authentication required. Please log in to continue.")
            user = db.session.get(User, int(user_id))
            if user is None:
                raise Unauthorized("User account no longer exists")
            if roles and user.role not in roles:
                raise Forbidden("You don't have permission to access this resource")
            g.current_user = user
            return view(*args, **kwargs)

        return wrapper

    return decorator
