from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from app.medblog.audit import record_event
from app.medblog.constants import (
    BOOL_FIELDS,
    DATE_FIELDS,
    INT_FIELDS,
    MULTI_VALUE_FIELDS,
    OPTIONAL_TEXT_FIELDS,
    POST_STATUSES,
    RISK_LEVELS,
    URL_FIELDS,
    WORDS_PER_MINUTE,
)
from app.medblog.modules.blog.models import Category, Post, Tag
from app.medblog.pagecache import revalidate_path
from app.medblog.utils import estimate_read_time, parse_bool, parse_datetime, slugify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.medblog.models import User

logger = logging.getLogger(__name__)

_LIST_SEPARATORS = re.compile(r"[,\n]")
_LINE_SEPARATOR = re.compile(r"\n")

# Citations routinely contain commas ("Smith J, et al."), so they split on lines only.
_LINE_ONLY_FIELDS = frozenset({"citations"})


class PostServiceError(RuntimeError):
    """User-facing failure; the underlying ORM error has already been logged."""


def _label(key: str) -> str:
    return key.replace("_", " ").capitalize()


# ---------- Multi-select merging ----------
def merge_multi_values(raw: Any, *, lower: bool = False, split_commas: bool = True) -> list[str]:
    """
    Flatten a creatable multi-select value into a clean list of strings.

    Accepts a list of strings, a list of {"label", "value"} options, a single
    comma/newline separated string, or None. Order of first appearance wins.
    """
    if raw is None:
        return []
    if isinstance(raw, (str, Mapping)):
        raw = [raw]

    splitter = _LIST_SEPARATORS if split_commas else _LINE_SEPARATOR
    values: list[str] = []
    for item in raw:
        if isinstance(item, Mapping):
            candidates: Iterable[Any] = [item.get("value") if item.get("value") is not None else item.get("label")]
        else:
            candidates = splitter.split(str(item if item is not None else ""))
        for candidate in candidates:
            value = str(candidate if candidate is not None else "").strip()
            if lower:
                value = value.lower()
            if value and value not in values:
                values.append(value)
    return values


# ---------- Normalization ----------
def _valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_post_payload(payload: Mapping[str, Any], *, partial: bool = False) -> tuple[dict[str, Any], list[str]]:
    """
    Normalize a raw post payload (form or JSON) into column values.

    Only keys present in the payload are emitted so update_post can merge.
    With partial=False the core fields (title, slug, content) are required.
    Returns (data, errors).
    """
    data: dict[str, Any] = {}
    errors: list[str] = []

    def text(key: str) -> str:
        value = payload.get(key)
        return str(value).strip() if value is not None else ""

    # Core
    for key in ("title", "content"):
        if key in payload or not partial:
            data[key] = text(key)
            if len(data[key]) < 3:
                errors.append(f"{_label(key)} must be at least 3 characters.")

    # A blank slug is generated from the title; a partial update without a slug keeps the stored one.
    if "slug" in payload or not partial:
        typed = text("slug")
        title = data.get("title") or text("title")
        slug = slugify(typed or title)
        data["slug"] = slug
        if len(slug) < 3:
            if not typed and len(title) >= 3:
                errors.append("The title has too few Latin letters or digits for a URL; enter a slug.")
            else:
                errors.append("Slug must be at least 3 characters.")

    if "image_url" in payload:
        data["image_url"] = text("image_url")

    if "status" in payload:
        status = text("status").lower() or "draft"
        if status not in POST_STATUSES:
            errors.append(f"Invalid status. Must be one of: {', '.join(POST_STATUSES)}")
        data["status"] = status

    if "category_id" in payload:
        raw_category = text("category_id")
        if not raw_category:
            data["category_id"] = None
        else:
            try:
                data["category_id"] = int(raw_category)
            except ValueError:
                data["category_id"] = None

    if "risk_level" in payload:
        risk = text("risk_level").lower() or None
        if risk and risk not in RISK_LEVELS:
            errors.append(f"Invalid risk level. Must be one of: {', '.join(RISK_LEVELS)}")
        data["risk_level"] = risk

    for key in OPTIONAL_TEXT_FIELDS:
        if key in payload:
            data[key] = text(key) or None

    for key in URL_FIELDS:
        if key in payload:
            url = text(key)
            if url and not _valid_url(url):
                errors.append(f"{_label(key)} must be a valid http(s) URL.")
            data[key] = url or None

    for key in INT_FIELDS:
        if key in payload:
            raw_int = text(key)
            if not raw_int:
                data[key] = None
                continue
            try:
                number = int(float(raw_int))
            except (OverflowError, ValueError):
                errors.append(f"{_label(key)} must be a whole number.")
                continue
            if number < 0:
                errors.append(f"{_label(key)} cannot be negative.")
                continue
            data[key] = number

    for key in DATE_FIELDS:
        if key in payload:
            raw_date = payload.get(key)
            try:
                data[key] = parse_datetime(raw_date if not isinstance(raw_date, str) else raw_date.strip())
            except (TypeError, ValueError):
                errors.append(f"{_label(key)} must be a date (YYYY-MM-DD).")

    for key in BOOL_FIELDS:
        if key in payload:
            data[key] = parse_bool(payload.get(key))

    for key in MULTI_VALUE_FIELDS:
        if key in payload:
            data[key] = merge_multi_values(
                payload.get(key),
                lower=(key == "tags"),
                split_commas=key not in _LINE_ONLY_FIELDS,
            )

    return data, errors


def validate_post_refs(s: "Session", data: Mapping[str, Any], post: Post | None = None) -> list[str]:
    """Database-backed checks: slug uniqueness and category existence."""
    errors: list[str] = []
    slug = data.get("slug")
    if slug:
        q = select(Post.id).where(Post.slug == slug)
        if post is not None:
            q = q.where(Post.id != post.id)
        if s.scalar(q) is not None:
            errors.append("Slug already in use.")
    category_id = data.get("category_id")
    if category_id is not None and s.get(Category, category_id) is None:
        errors.append("Category not found.")
    return errors


# ---------- Helpers ----------
def _resolve_tags(s: "Session", names: list[str]) -> list[Tag]:
    if not names:
        return []
    existing = {t.name: t for t in s.scalars(select(Tag).where(Tag.name.in_(names)))}
    tags: list[Tag] = []
    for name in names:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name)
            s.add(tag)
            existing[name] = tag
        tags.append(tag)
    return tags


def _revalidate_post_pages(*slugs: str) -> None:
    revalidate_path(
        "/",
        "/blog",
        *(f"/blog/posts/{slug}" for slug in dict.fromkeys(slugs) if slug),
        "/blog/category/*",
        "/blog/tag/*",
    )


def _default_canonical_url(slug: str) -> str:
    site_url = (current_app.config.get("SITE_URL") or "").rstrip("/")
    return f"{site_url}/blog/posts/{slug}"


_NULLABLE_KEYS = OPTIONAL_TEXT_FIELDS + URL_FIELDS + INT_FIELDS + DATE_FIELDS + ("risk_level",)


# ---------- Create ----------
def create_post(s: "Session", data: Mapping[str, Any], user: "User") -> Post:
    """
    Create a post from normalized data, filling every optional field with its default.
    Commits and revalidates dependent pages.
    """
    now = datetime.utcnow()
    title = data["title"]
    slug = data["slug"]
    image_url = data.get("image_url") or ""

    values: dict[str, Any] = {key: data.get(key) for key in _NULLABLE_KEYS}
    values.update(
        {
            "title": title,
            "slug": slug,
            "content": data["content"],
            "image_url": image_url,
            "status": data.get("status") or "draft",
            "category_id": data.get("category_id"),
            "has_disclaimer": data.get("has_disclaimer", True),
            "no_index": data.get("no_index", False),
            "date_published": data.get("date_published") or now,
            "seo_title": data.get("seo_title") or title,
            "seo_description": data.get("seo_description") or "",
            "canonical_url": data.get("canonical_url") or _default_canonical_url(slug),
            "og_image": data.get("og_image") or image_url or None,
        }
    )
    if values.get("reading_time") is None:
        values["reading_time"] = estimate_read_time(data["content"], WORDS_PER_MINUTE)
    for key in MULTI_VALUE_FIELDS:
        if key != "tags":
            values[key] = list(data.get(key) or [])

    try:
        post = Post(user_id=user.id, created_at=now, updated_at=now, **values)
        post.tags = _resolve_tags(s, list(data.get("tags") or []))
        s.add(post)
        s.flush()
        record_event(
            s,
            actor=user,
            action="post.create",
            entity_type="Post",
            entity_id=str(post.id),
            metadata={"title": post.title, "slug": post.slug, "status": post.status},
        )
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.exception("Create post failed (slug=%s)", slug)
        raise PostServiceError("Failed to create post") from e

    logger.info("Post created id=%s slug=%s status=%s", post.id, post.slug, post.status)
    _revalidate_post_pages(post.slug)
    return post


# ---------- Update ----------
def update_post(s: "Session", post: Post, data: Mapping[str, Any], user: "User") -> Post:
    """
    Merge normalized data into an existing post.

    Keys absent from data keep their stored value; present-but-blank values
    were already turned into None and clear the column. List fields and the
    category are always replaced, has_disclaimer falls back to True.
    """
    old_slug = post.slug
    changes: list[str] = []

    merged: dict[str, Any] = {k: v for k, v in data.items() if k not in ("tags", "category_id")}
    for key in MULTI_VALUE_FIELDS:
        if key != "tags":
            merged[key] = list(data.get(key) or [])
    merged["has_disclaimer"] = data.get("has_disclaimer", True)
    merged["date_modified"] = data.get("date_modified") or datetime.utcnow()
    if "image_url" in merged:
        merged["image_url"] = merged["image_url"] or ""

    try:
        for key, value in merged.items():
            if getattr(post, key) != value:
                setattr(post, key, value)
                if key != "date_modified":
                    changes.append(key)

        category_id = data.get("category_id")
        if post.category_id != category_id:
            changes.append("category_id")
        post.category = s.get(Category, category_id) if category_id is not None else None

        new_tags = _resolve_tags(s, list(data.get("tags") or []))
        if sorted(t.name for t in new_tags) != sorted(post.tag_names):
            changes.append("tags")
        post.tags = new_tags

        post.user = user
        post.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="post.update",
            entity_type="Post",
            entity_id=str(post.id),
            metadata={"slug": post.slug, "changes": sorted(set(changes))},
        )
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.exception("Update post failed (id=%s)", post.id)
        raise PostServiceError("Failed to update post") from e

    _revalidate_post_pages(old_slug, post.slug)
    return post


# ---------- Delete ----------
def remove_post(s: "Session", post: Post, user: "User") -> None:
    slug = post.slug
    post_id = post.id
    try:
        s.delete(post)
        record_event(
            s,
            actor=user,
            action="post.delete",
            entity_type="Post",
            entity_id=str(post_id),
            metadata={"slug": slug, "title": post.title},
        )
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.exception("Delete post failed (id=%s)", post_id)
        raise PostServiceError("Something went wrong") from e
    _revalidate_post_pages(slug)


# ---------- Views ----------
def increment_post_views(s: "Session", post_id: int) -> int | None:
    """Atomically bump the view counter. Returns the new count, None if the post is gone."""
    try:
        result = s.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(views=Post.views + 1)
        )
        if not result.rowcount:
            s.rollback()
            return None
        views = s.scalar(select(Post.views).where(Post.id == post_id))
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.exception("View count update failed (id=%s)", post_id)
        raise PostServiceError("Something went wrong") from e
    return views


# ---------- Saved posts ----------
def toggle_saved_post(s: "Session", user: "User", post: Post) -> bool:
    """Add or remove a post from the user's saved list. Returns True when now saved."""
    if post in user.saved_posts:
        user.saved_posts.remove(post)
        saved = False
    else:
        user.saved_posts.append(post)
        saved = True
    s.commit()
    return saved


# ---------- Categories ----------
def validate_category_name(s: "Session", name: str, category: Category | None = None) -> list[str]:
    name = (name or "").strip()
    if not name:
        return ["Name is required."]
    q = select(Category.id).where(func.lower(Category.name) == name.lower())
    if category is not None:
        q = q.where(Category.id != category.id)
    if s.scalar(q) is not None:
        return ["A category with that name already exists."]
    return []


def _revalidate_category_pages() -> None:
    revalidate_path("/", "/blog", "/blog/category/*")


def create_category(s: "Session", name: str, user: "User") -> Category:
    now = datetime.utcnow()
    category = Category(name=name.strip(), created_at=now, updated_at=now)
    s.add(category)
    s.flush()
    record_event(
        s,
        actor=user,
        action="category.create",
        entity_type="Category",
        entity_id=str(category.id),
        metadata={"name": category.name},
    )
    s.commit()
    _revalidate_category_pages()
    return category


def rename_category(s: "Session", category: Category, name: str, user: "User") -> Category:
    old_name = category.name
    category.name = name.strip()
    category.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="category.rename",
        entity_type="Category",
        entity_id=str(category.id),
        metadata={"old": old_name, "new": category.name},
    )
    s.commit()
    _revalidate_category_pages()
    return category


def delete_category(s: "Session", category: Category, user: "User") -> None:
    """Posts in the category survive with category_id cleared (ON DELETE SET NULL)."""
    category_id = category.id
    name = category.name
    s.execute(
        update(Post)
        .where(Post.category_id == category_id)
        .values(category_id=None)
        .execution_options(synchronize_session=False)
    )
    s.delete(category)
    record_event(
        s,
        actor=user,
        action="category.delete",
        entity_type="Category",
        entity_id=str(category_id),
        metadata={"name": name},
    )
    s.commit()
    _revalidate_category_pages()
    revalidate_path("/blog/posts/*")
