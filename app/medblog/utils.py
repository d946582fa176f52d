from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime

_TAG_RE = re.compile(r"<[^>]+>")


def slugify(value: str) -> str:
    # Fold accents ("Ödem" -> "odem") before dropping what is left outside ASCII.
    value = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    value = value.strip().lower()
    value = re.sub(r"[^a-z0-9\s-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value)
    return value.strip("-")


def strip_html(html: str | None) -> str:
    text = _TAG_RE.sub(" ", html or "")
    return " ".join(text.split())


def excerpt(html: str | None, length: int = 160) -> str:
    text = strip_html(html)
    if len(text) <= length:
        return text
    return text[:length].rsplit(" ", 1)[0].rstrip(",.;:") + "…"


def estimate_read_time(html: str | None, words_per_minute: int = 200) -> int:
    word_count = len(strip_html(html).split())
    return max(1, math.ceil(word_count / words_per_minute))


def parse_datetime(s: str | date | datetime | None) -> datetime | None:
    """Parse YYYY-MM-DD or a full ISO datetime. Raises ValueError on junk."""
    if s is None:
        return None
    if isinstance(s, datetime):
        return s
    if isinstance(s, date):
        return datetime.combine(s, datetime.min.time())
    s = s.strip()
    if not s:
        return None
    parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    # Stored columns are naive UTC.
    return parsed.replace(tzinfo=None)


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "on", "yes")
