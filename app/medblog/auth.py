from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import wraps
from typing import Any

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy import select
from werkzeug.security import check_password_hash, generate_password_hash

from app.medblog.access import is_admin
from app.medblog.audit import record_event
from app.medblog.db import db_session
from app.medblog.models import User

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_MIN_PASSWORD_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _safe_next(nxt: str) -> str | None:
    # Only local paths, to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def require_no_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Sign-in and sign-up pages bounce visitors who already have a session."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if getattr(g, "current_user", None) is not None:
            return redirect(url_for("blog.index"))
        return fn(*args, **kwargs)

    return wrapped


def _landing_for(user: User) -> str:
    return url_for("admin.index") if is_admin(user) else url_for("blog.index")


@bp.get("/login")
@require_no_auth
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
@require_no_auth
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        current_app.logger.warning("Login rate limit hit (ip=%s request_id=%s)", ip, getattr(g, "request_id", None))
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.scalar(select(User).where(User.email == email))
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            flash("Invalid credentials.", "danger")
            return redirect(url_for("auth.login_get", next=nxt) if nxt else url_for("auth.login_get"))

        session["user_id"] = user.id
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return redirect(_safe_next(nxt) or _landing_for(user))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/signup")
@require_no_auth
def signup_get():
    return render_template("auth/signup.html")


@bp.post("/signup")
@require_no_auth
def signup_post():
    s = db_session()
    email = (request.form.get("email") or "").strip().lower()
    name = (request.form.get("name") or "").strip()
    password = request.form.get("password") or ""
    confirm = request.form.get("confirm_password") or ""

    errors: list[str] = []
    if not email or "@" not in email:
        errors.append("A valid email is required.")
    if len(password) < _MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
    if password != confirm:
        errors.append("Passwords do not match.")
    if email and email == (current_app.config.get("ADMIN_EMAIL") or "").lower():
        errors.append("That email is reserved.")
    elif email and s.scalar(select(User.id).where(User.email == email)) is not None:
        errors.append("An account with that email already exists.")
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("auth/signup.html", email=email, name=name), 400

    user = User(email=email, name=name, password_hash=generate_password_hash(password), is_active=True)
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()

    session["user_id"] = user.id
    current_app.logger.info("New account id=%s (request_id=%s)", user.id, getattr(g, "request_id", None))
    flash("Welcome! Your account is ready.", "success")
    return redirect(url_for("blog.index"))


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("blog.index"))
