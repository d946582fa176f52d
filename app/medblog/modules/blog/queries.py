"""
Read-side queries for the blog: paginated listings, lookups and search.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flask import url_for
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from app.medblog.constants import PAGE_SIZE, SEARCH_LIMIT, SEARCH_MIN_QUERY
from app.medblog.modules.blog.models import Category, Post, PostTag, Tag

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from sqlalchemy.sql import Select
    from app.medblog.models import User

logger = logging.getLogger(__name__)


@dataclass
class Page:
    items: list[Post] = field(default_factory=list)
    total: int = 0
    total_pages: int = 0
    current_page: int = 1

    @property
    def has_prev(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def prev_num(self) -> int:
        return max(1, self.current_page - 1)

    @property
    def next_num(self) -> int:
        return self.current_page + 1


def _clamp_page(page: Any) -> int:
    try:
        page = int(page)
    except (TypeError, ValueError):
        return 1
    return max(1, page)


def _listing(s: "Session", q: "Select", page: Any, per_page: int = PAGE_SIZE) -> Page:
    current = _clamp_page(page)
    total = s.scalar(select(func.count()).select_from(q.order_by(None).subquery())) or 0
    items = list(
        s.scalars(
            q.options(selectinload(Post.category), selectinload(Post.user), selectinload(Post.tags))
            .order_by(Post.updated_at.desc(), Post.id.desc())
            .offset((current - 1) * per_page)
            .limit(per_page)
        )
    )
    return Page(items=items, total=total, total_pages=math.ceil(total / per_page), current_page=current)


def _base(published_only: bool) -> "Select":
    q = select(Post)
    if published_only:
        q = q.where(Post.status == "published")
    return q


def get_posts(s: "Session", page: Any = 1, *, published_only: bool = True) -> Page:
    return _listing(s, _base(published_only), page)


def get_posts_by_category(s: "Session", category_id: int, page: Any = 1, *, published_only: bool = True) -> Page:
    return _listing(s, _base(published_only).where(Post.category_id == category_id), page)


def get_posts_by_tag(s: "Session", tag: str, page: Any = 1, *, published_only: bool = True) -> Page:
    name = (tag or "").strip().lower()
    return _listing(s, _base(published_only).where(Post.tags.any(func.lower(Tag.name) == name)), page)


def get_blog_post_by_slug(s: "Session", slug: str) -> Post | None:
    """Any status; callers decide whether a draft may be shown."""
    return s.scalar(select(Post).where(Post.slug == slug))


def get_public_posts_for_ssg(s: "Session", limit: int = 100) -> list[dict[str, Any]]:
    """Published posts for pre-rendering and cache warm-up."""
    rows = s.execute(
        select(Post.id, Post.title, Post.slug, Post.image_url)
        .where(Post.status == "published")
        .order_by(Post.updated_at.desc(), Post.id.desc())
        .limit(limit)
    ).all()
    return [{"id": r.id, "title": r.title, "slug": r.slug, "image_url": r.image_url} for r in rows]


def get_all_categories(s: "Session") -> list[Category]:
    return list(s.scalars(select(Category).order_by(Category.name.asc())))


def get_all_tags(s: "Session") -> list[str]:
    """Distinct tag names used by at least one published post."""
    published_tag_ids = (
        select(PostTag.tag_id)
        .join(Post, Post.id == PostTag.post_id)
        .where(Post.status == "published")
    )
    return list(s.scalars(select(Tag.name).where(Tag.id.in_(published_tag_ids)).order_by(Tag.name.asc())))


def get_posts_by_user(s: "Session", user: "User", limit: int = 10) -> list[Post]:
    return list(
        s.scalars(
            select(Post)
            .where(Post.user_id == user.id)
            .order_by(Post.updated_at.desc(), Post.id.desc())
            .limit(limit)
        )
    )


def search_content(s: "Session", query: str | None) -> list[dict[str, Any]]:
    """
    Search published posts (title/content substring or exact tag) and category names.

    Never raises on ORM failure: the error is logged and no results are returned.
    """
    term = (query or "").strip()
    if len(term) < SEARCH_MIN_QUERY:
        return []

    pattern = f"%{term.lower()}%"
    try:
        posts = s.scalars(
            select(Post)
            .where(
                Post.status == "published",
                or_(
                    func.lower(Post.title).like(pattern),
                    func.lower(Post.content).like(pattern),
                    Post.tags.any(Tag.name == term.lower()),
                ),
            )
            .order_by(Post.updated_at.desc(), Post.id.desc())
            .limit(SEARCH_LIMIT)
        ).all()
        categories = s.scalars(
            select(Category)
            .where(func.lower(Category.name).like(pattern))
            .order_by(Category.name.asc())
            .limit(SEARCH_LIMIT)
        ).all()
    except SQLAlchemyError:
        logger.exception("Search failed (q=%r)", term)
        return []

    results: list[dict[str, Any]] = [
        {
            "type": "post",
            "id": p.id,
            "title": p.title,
            "url": url_for("blog.post_detail", slug=p.slug),
            "image_url": p.image_url,
        }
        for p in posts
    ]
    results.extend(
        {
            "type": "category",
            "id": c.id,
            "name": c.name,
            "url": url_for("blog.category_posts", category_id=c.id),
        }
        for c in categories
    )
    return results
