from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.intake.models import User


def current_user() -> User | None:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return user


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    401 when nobody is signed in, 403 when the user's role is not in `roles`.
    With no roles given any signed-in user passes.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = current_user()
            if user is None:
                abort(401)
            if roles and user.role not in roles:
                g.missing_role = ",".join(roles)
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


login_required = require_role()
admin_required = require_role("ADMIN")
