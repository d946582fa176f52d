from datetime import date, datetime, time, timedelta

from flask import Blueprint, flash, g, render_template, request
from sqlalchemy import func, select

from app.medblog.access import require_admin
from app.medblog.db import db_session
from app.medblog.models import AuditEvent, User
from app.medblog.modules.blog.models import Category, Post
from app.medblog.modules.blog.queries import get_posts_by_user

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/")
@require_admin
def index():
    s = db_session()
    counts = dict(s.execute(select(Post.status, func.count(Post.id)).group_by(Post.status)).all())
    stats = {
        "published": counts.get("published", 0),
        "draft": counts.get("draft", 0),
        "total": sum(counts.values()),
        "views": s.scalar(select(func.coalesce(func.sum(Post.views), 0))) or 0,
        "categories": s.scalar(select(func.count(Category.id))) or 0,
    }
    return render_template(
        "admin/index.html",
        stats=stats,
        recent_posts=get_posts_by_user(s, _current_user()),
    )


@bp.get("/audit")
@require_admin
def audit_list():
    """
    Latest 200 audit events with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = select(AuditEvent)
    if action:
        q = q.where(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.where(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.where(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.where(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = s.scalars(q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200)).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )
