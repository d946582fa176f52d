from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, jsonify, redirect, render_template, request, url_for

from app.medblog.access import is_admin, require_login
from app.medblog.db import db_session
from app.medblog.models import User
from app.medblog.modules.blog.models import Category, Post
from app.medblog.modules.blog.queries import (
    get_all_categories,
    get_all_tags,
    get_blog_post_by_slug,
    get_posts,
    get_posts_by_category,
    get_posts_by_tag,
    get_public_posts_for_ssg,
    search_content,
)
from app.medblog.modules.blog.service import PostServiceError, increment_post_views, toggle_saved_post
from app.medblog.pagecache import cached_page

bp = Blueprint("blog", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- Listings ----------
@bp.get("/blog")
@bp.get("/")
@cached_page
def index():
    s = db_session()
    page = get_posts(s, request.args.get("page", 1))
    return render_template(
        "public/index.html",
        page=page,
        categories=get_all_categories(s),
        tags=get_all_tags(s),
    )


@bp.get("/blog/category/<int:category_id>")
@cached_page
def category_posts(category_id: int):
    s = db_session()
    category = s.get(Category, category_id)
    if not category:
        abort(404)
    page = get_posts_by_category(s, category_id, request.args.get("page", 1))
    return render_template("public/category.html", category=category, page=page)


@bp.get("/blog/tag/<tag>")
@cached_page
def tag_posts(tag: str):
    s = db_session()
    page = get_posts_by_tag(s, tag, request.args.get("page", 1))
    return render_template("public/tag.html", tag=tag.strip().lower(), page=page)


# ---------- Detail ----------
@bp.get("/blog/posts/<slug>")
@cached_page
def post_detail(slug: str):
    s = db_session()
    post = get_blog_post_by_slug(s, slug)
    if not post:
        abort(404)
    user = getattr(g, "current_user", None)
    if not post.is_published and not is_admin(user):
        abort(404)
    return render_template(
        "public/post.html",
        post=post,
        is_saved=bool(user and post.id in user.saved_post_ids),
    )


# ---------- Search ----------
@bp.get("/search")
def search():
    s = db_session()
    q = (request.args.get("q") or "").strip()
    results = search_content(s, q)
    return render_template("public/search.html", q=q, results=results)


@bp.get("/api/search")
def api_search():
    s = db_session()
    return jsonify({"results": search_content(s, request.args.get("q"))})


@bp.get("/api/posts")
def api_public_posts():
    """Published posts for pre-rendering detail pages."""
    s = db_session()
    try:
        limit = max(1, min(int(request.args.get("limit", 100)), 100))
    except ValueError:
        limit = 100
    return jsonify({"posts": get_public_posts_for_ssg(s, limit=limit)})


# ---------- Views ----------
@bp.post("/api/posts/<int:post_id>/view")
def api_post_view(post_id: int):
    s = db_session()
    try:
        views = increment_post_views(s, post_id)
    except PostServiceError as e:
        return jsonify({"ok": False, "error": str(e)}), 500
    if views is None:
        return jsonify({"ok": False, "error": "Post not found"}), 404
    return jsonify({"ok": True, "views": views})


# ---------- Saved posts ----------
@bp.post("/blog/posts/<int:post_id>/save")
@require_login
def post_save_toggle(post_id: int):
    s = db_session()
    u = _current_user()
    post = s.get(Post, post_id)
    if not post or not post.is_published:
        abort(404)
    saved = toggle_saved_post(s, u, post)
    current_app.logger.info("Saved-post toggle user=%s post=%s saved=%s", u.id, post.id, saved)
    flash("Post saved." if saved else "Post removed from saved posts.", "success")
    return redirect(url_for("blog.post_detail", slug=post.slug))


@bp.get("/saved-posts")
@require_login
def saved_posts():
    u = _current_user()
    posts = [p for p in u.saved_posts if p.is_published]
    return render_template("public/saved.html", posts=posts)
