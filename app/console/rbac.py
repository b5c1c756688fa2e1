from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify

from app.console.models import User

SUPERUSER_ROLE_KEY = "admin"


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_role_keys(user: User | None) -> frozenset[str]:
    if not user or not user.is_active:
        return frozenset()
    return frozenset(role.key for role in user.roles)


def user_is_superuser(user: User | None) -> bool:
    return SUPERUSER_ROLE_KEY in user_role_keys(user)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 (API clients re-login via /auth/login).
            if not user or not user.is_active:
                return jsonify({"error": "Authentication required."}), 401
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
