from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for
from werkzeug.datastructures import MultiDict

from app.medblog.access import require_admin
from app.medblog.db import db_session
from app.medblog.models import User
from app.medblog.constants import (
    BOOL_FIELDS,
    DATE_FIELDS,
    INT_FIELDS,
    MULTI_VALUE_FIELDS,
    OPTIONAL_TEXT_FIELDS,
    POST_STATUSES,
    RISK_LEVELS,
    URL_FIELDS,
)
from app.medblog.modules.blog.models import Category, Post
from app.medblog.modules.blog.queries import get_all_categories, get_posts, get_posts_by_category, get_posts_by_tag
from app.medblog.modules.blog.service import (
    PostServiceError,
    create_category,
    create_post,
    delete_category,
    normalize_post_payload,
    remove_post,
    rename_category,
    update_post,
    validate_category_name,
    validate_post_refs,
)

bp = Blueprint("blog_admin", __name__)

_SCALAR_FIELDS = (
    ("title", "slug", "content", "image_url", "status", "category_id", "risk_level")
    + OPTIONAL_TEXT_FIELDS
    + URL_FIELDS
    + INT_FIELDS
    + DATE_FIELDS
)

# datetime-local with step=1; microseconds are not representable in the input.
_FORM_DATETIME = "%Y-%m-%dT%H:%M:%S"


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _post_payload_from_form(form: MultiDict) -> dict[str, Any]:
    payload: dict[str, Any] = {key: form.get(key) for key in _SCALAR_FIELDS if key in form}
    # Checkboxes ride behind a hidden "0" input; the last value wins.
    for key in BOOL_FIELDS:
        values = form.getlist(key)
        if values:
            payload[key] = values[-1]
    for key in MULTI_VALUE_FIELDS:
        if key in form:
            payload[key] = form.getlist(key)
    return payload


def _form_values(post: Post | None) -> dict[str, Any]:
    """String values for the editor inputs."""
    if post is None:
        return {"status": "draft", "has_disclaimer": True, "no_index": False}
    values: dict[str, Any] = {key: getattr(post, key) or "" for key in _SCALAR_FIELDS}
    values["category_id"] = post.category_id or ""
    for key in INT_FIELDS:
        value = getattr(post, key)
        values[key] = "" if value is None else str(value)
    for key in DATE_FIELDS:
        value: datetime | None = getattr(post, key)
        values[key] = value.strftime(_FORM_DATETIME) if value else ""
    # Left blank so each save stamps a fresh modification date.
    values["date_modified"] = ""
    values["tags"] = ", ".join(post.tag_names)
    for key in ("medical_conditions", "symptoms", "treatments", "medications"):
        values[key] = ", ".join(getattr(post, key) or [])
    values["citations"] = "\n".join(post.citations or [])
    for key in BOOL_FIELDS:
        values[key] = bool(getattr(post, key))
    return values


def _keep_stored_times(post: Post, form: MultiDict, data: dict[str, Any]) -> None:
    """
    Resubmitting a stored timestamp must not move it.

    The editor drops microseconds, and older forms or clients send a bare
    YYYY-MM-DD. Either way, a value that names the stored instant (or its day,
    for a bare date) keeps the stored value.
    """
    for key in DATE_FIELDS:
        submitted = data.get(key)
        stored: datetime | None = getattr(post, key)
        if submitted is None or stored is None:
            continue
        raw = (form.get(key) or "").strip()
        if len(raw) == 10 and submitted.date() == stored.date():
            data[key] = stored
        elif submitted == stored.replace(microsecond=0):
            data[key] = stored


def _submitted_values(form: MultiDict) -> dict[str, Any]:
    values: dict[str, Any] = {key: form.get(key, "") for key in _SCALAR_FIELDS}
    for key in MULTI_VALUE_FIELDS:
        values[key] = form.get(key, "")
    for key in BOOL_FIELDS:
        values[key] = (form.getlist(key) or ["0"])[-1] in ("1", "on", "true", "yes")
    return values


def _render_form(post: Post | None, values: dict[str, Any], status_code: int = 200):
    s = db_session()
    return (
        render_template(
            "admin/posts/form.html",
            post=post,
            values=values,
            categories=get_all_categories(s),
            statuses=POST_STATUSES,
            risk_levels=RISK_LEVELS,
        ),
        status_code,
    )


# ---------- List ----------
@bp.get("/posts")
@require_admin
def posts_list():
    s = db_session()
    page_num = request.args.get("page", 1)
    category_filter = (request.args.get("category") or "").strip()
    tag_filter = (request.args.get("tag") or "").strip().lower()

    if category_filter.isdigit():
        page = get_posts_by_category(s, int(category_filter), page_num, published_only=False)
    elif tag_filter:
        page = get_posts_by_tag(s, tag_filter, page_num, published_only=False)
    else:
        page = get_posts(s, page_num, published_only=False)

    return render_template(
        "admin/posts/list.html",
        page=page,
        categories=get_all_categories(s),
        category_filter=category_filter,
        tag_filter=tag_filter,
    )


# ---------- New ----------
@bp.get("/posts/new")
@require_admin
def posts_new_get():
    return _render_form(None, _form_values(None))


@bp.post("/posts/new")
@require_admin
def posts_new_post():
    s = db_session()
    u = _current_user()

    data, errors = normalize_post_payload(_post_payload_from_form(request.form))
    if not errors:
        errors = validate_post_refs(s, data)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(None, _submitted_values(request.form), 400)

    try:
        post = create_post(s, data, u)
    except PostServiceError as e:
        flash(str(e), "danger")
        return _render_form(None, _submitted_values(request.form), 500)

    flash("Post created.", "success")
    return redirect(url_for("blog_admin.post_edit_get", post_id=post.id))


# ---------- Edit ----------
@bp.get("/posts/<int:post_id>")
@require_admin
def post_edit_get(post_id: int):
    s = db_session()
    post = s.get(Post, post_id)
    if not post:
        abort(404)
    return _render_form(post, _form_values(post))


@bp.post("/posts/<int:post_id>")
@require_admin
def post_edit_post(post_id: int):
    s = db_session()
    u = _current_user()
    post = s.get(Post, post_id)
    if not post:
        abort(404)

    data, errors = normalize_post_payload(_post_payload_from_form(request.form), partial=True)
    if not errors:
        errors = validate_post_refs(s, data, post=post)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(post, _submitted_values(request.form), 400)

    _keep_stored_times(post, request.form, data)
    try:
        update_post(s, post, data, u)
    except PostServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("blog_admin.post_edit_get", post_id=post_id))

    flash("Post updated.", "success")
    return redirect(url_for("blog_admin.post_edit_get", post_id=post_id))


# ---------- Delete ----------
@bp.post("/posts/<int:post_id>/delete")
@require_admin
def post_delete(post_id: int):
    s = db_session()
    u = _current_user()
    post = s.get(Post, post_id)
    if not post:
        abort(404)
    try:
        remove_post(s, post, u)
    except PostServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("blog_admin.post_edit_get", post_id=post_id))
    flash("Post deleted.", "success")
    return redirect(url_for("blog_admin.posts_list"))


# ---------- Categories ----------
@bp.get("/categories")
@require_admin
def categories_list():
    s = db_session()
    return render_template("admin/categories/list.html", categories=get_all_categories(s))


@bp.post("/categories")
@require_admin
def categories_create():
    s = db_session()
    u = _current_user()
    name = (request.form.get("name") or "").strip()
    errors = validate_category_name(s, name)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("blog_admin.categories_list"))
    create_category(s, name, u)
    flash("Category created.", "success")
    return redirect(url_for("blog_admin.categories_list"))


@bp.post("/categories/<int:category_id>/rename")
@require_admin
def category_rename(category_id: int):
    s = db_session()
    u = _current_user()
    category = s.get(Category, category_id)
    if not category:
        abort(404)
    name = (request.form.get("name") or "").strip()
    errors = validate_category_name(s, name, category=category)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("blog_admin.categories_list"))
    rename_category(s, category, name, u)
    flash("Category renamed.", "success")
    return redirect(url_for("blog_admin.categories_list"))


@bp.post("/categories/<int:category_id>/delete")
@require_admin
def category_delete(category_id: int):
    s = db_session()
    u = _current_user()
    category = s.get(Category, category_id)
    if not category:
        abort(404)
    delete_category(s, category, u)
    flash("Category deleted.", "success")
    return redirect(url_for("blog_admin.categories_list"))
