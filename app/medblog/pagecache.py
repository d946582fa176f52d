"""
In-process cache for rendered public pages.

Anonymous GET responses of views wrapped with @cached_page are kept for
PAGE_CACHE_TTL seconds, keyed by path plus the `page` query parameter. Each
worker keeps at most PAGE_CACHE_MAX_ENTRIES pages and evicts the least
recently used one first.

Writes call revalidate_path() to drop the pages that depend on the changed
rows. The drop is local to the worker that handled the write, so every
revalidation is also appended to the page_revalidations table; a cache hit
in any worker is discarded when a matching revalidation is newer than the
moment the page started rendering.

Patterns:
- "/blog"              exact path, plus every query-string variant ("/blog?page=2")
- "/blog/category/*"   every cached path under the prefix
"""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Any

from flask import Flask, Response, current_app, g, request, session
from sqlalchemy import delete, func, insert, select
from sqlalchemy.engine import Engine

from app.medblog.models import PageRevalidation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedPage:
    body: bytes
    mimetype: str
    stored_at: float
    rendered_at: datetime


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


def _key_patterns(key: str) -> list[str]:
    """Every revalidation pattern that covers `key`: its path and each ancestor prefix."""
    path = key.split("?", 1)[0]
    patterns = [_normalize_path(path)]
    for i, ch in enumerate(path):
        if ch == "/":
            patterns.append(path[: i + 1] + "*")
    return patterns


class PageCache:
    def __init__(
        self,
        ttl: int = 3600,
        enabled: bool = True,
        max_entries: int = 512,
        engine: Engine | None = None,
    ) -> None:
        self.ttl = ttl
        self.enabled = enabled
        self.max_entries = max_entries
        self._engine = engine
        self._entries: OrderedDict[str, CachedPage] = OrderedDict()
        self._lock = threading.Lock()

    def _expired(self, entry: CachedPage, now: float) -> bool:
        return now - entry.stored_at > self.ttl

    def get(self, key: str) -> CachedPage | None:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, time.monotonic()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)

        if self._engine is not None and self._revalidated_since(key, entry.rendered_at):
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            logger.debug("Discarded %s: revalidated by another worker", key)
            return None
        return entry

    def set(self, key: str, body: bytes, mimetype: str, rendered_at: datetime | None = None) -> None:
        if not self.enabled:
            return
        now = time.monotonic()
        with self._lock:
            for stale in [k for k, e in self._entries.items() if self._expired(e, now)]:
                del self._entries[stale]
            self._entries[key] = CachedPage(
                body=body,
                mimetype=mimetype,
                stored_at=now,
                rendered_at=rendered_at or datetime.utcnow(),
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def revalidate(self, pattern: str) -> int:
        if pattern.endswith("/*"):
            prefix = pattern[:-1]

            def matches(key: str) -> bool:
                return key.startswith(prefix)
        else:
            pattern = _normalize_path(pattern)

            def matches(key: str) -> bool:
                return _normalize_path(key.split("?", 1)[0]) == pattern

        with self._lock:
            stale = [k for k in self._entries if matches(k)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Revalidated %s: dropped %d cached page(s)", pattern, len(stale))

        if self.enabled and self._engine is not None:
            self._record_revalidation(pattern)
        return len(stale)

    def _record_revalidation(self, pattern: str) -> None:
        now = datetime.utcnow()
        with self._engine.begin() as conn:
            conn.execute(insert(PageRevalidation).values(pattern=pattern, created_at=now))
            # Older rows can only match entries that have expired anyway.
            conn.execute(delete(PageRevalidation).where(PageRevalidation.created_at < now - timedelta(seconds=self.ttl)))

    def _revalidated_since(self, key: str, rendered_at: datetime) -> bool:
        with self._engine.connect() as conn:
            latest = conn.scalar(
                select(func.max(PageRevalidation.created_at)).where(PageRevalidation.pattern.in_(_key_patterns(key)))
            )
        return latest is not None and latest >= rendered_at

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


def init_page_cache(app: Flask) -> PageCache:
    cache = PageCache(
        ttl=int(app.config.get("PAGE_CACHE_TTL", 3600)),
        enabled=bool(app.config.get("PAGE_CACHE_ENABLED", True)),
        max_entries=int(app.config.get("PAGE_CACHE_MAX_ENTRIES", 512)),
        engine=app.extensions.get("sqlalchemy_engine"),
    )
    app.extensions["page_cache"] = cache
    return cache


def page_cache() -> PageCache:
    return current_app.extensions["page_cache"]


def revalidate_path(*patterns: str) -> None:
    cache = page_cache()
    for pattern in patterns:
        cache.revalidate(pattern)


def _cache_key() -> str:
    # Only `page` changes what a cached view renders; other parameters share the entry.
    page = request.args.get("page", "").strip()
    if page.isdigit() and int(page) > 1:
        return f"{request.path}?page={int(page)}"
    return request.path


def _cacheable_request() -> bool:
    # Signed-in views differ per user (admin sees drafts, save buttons).
    if getattr(g, "current_user", None) is not None:
        return False
    # Pending flash messages would be baked into the page.
    return "_flashes" not in session


def cached_page(view: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(view)
    def wrapped(*args: Any, **kwargs: Any):
        if request.method != "GET" or not _cacheable_request():
            return view(*args, **kwargs)
        cache = page_cache()
        key = _cache_key()
        hit = cache.get(key)
        if hit is not None:
            resp = Response(hit.body, mimetype=hit.mimetype)
            resp.headers["X-Page-Cache"] = "HIT"
            return resp
        rendered_at = datetime.utcnow()
        resp = current_app.make_response(view(*args, **kwargs))
        if resp.status_code == 200 and not resp.direct_passthrough:
            cache.set(key, resp.get_data(), resp.mimetype or "text/html", rendered_at=rendered_at)
            resp.headers["X-Page-Cache"] = "MISS"
        return resp

    return wrapped
