from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g, jsonify

from app.openmics.models import User


def current_actor() -> str | None:
    """Identity handed to the store for the current request, if any."""
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return user.id


def require_user(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        # Unauthenticated -> 401 JSON; the frontend sends the user to its login form.
        if current_actor() is None:
            return jsonify({"error": "Unauthorized", "message": "Login required."}), 401
        return fn(*args, **kwargs)

    return wrapped
