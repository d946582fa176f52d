from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, g, redirect, request, url_for

from app.medblog.models import User


def is_admin(user: User | None) -> bool:
    """The single privileged account is the active user whose email matches ADMIN_EMAIL."""
    if not user or not user.is_active:
        return False
    admin_email = (current_app.config.get("ADMIN_EMAIL") or "").strip().lower()
    return bool(admin_email) and user.email.lower() == admin_email


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        # Unauthenticated -> login; authenticated but not the admin -> 403
        if not user or not user.is_active:
            return _login_redirect()
        if not is_admin(user):
            abort(403)
        return fn(*args, **kwargs)

    return wrapped
