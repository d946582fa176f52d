import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    admin_email: str
    site_url: str
    site_name: str

    page_cache_enabled: bool
    page_cache_ttl: int
    page_cache_max_entries: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _database_url() -> str:
    url = _getenv("DATABASE_URL", "sqlite:///medblog.db")
    # Heroku/Render style URLs are not accepted by SQLAlchemy 2.x.
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def load_settings() -> Settings:
    try:
        ttl = int(_getenv("PAGE_CACHE_TTL", "3600"))
    except ValueError:
        ttl = 3600
    try:
        max_entries = int(_getenv("PAGE_CACHE_MAX_ENTRIES", "512"))
    except ValueError:
        max_entries = 512
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_database_url(),
        admin_email=_getenv("ADMIN_EMAIL", "admin@example.com").lower(),
        site_url=_getenv("SITE_URL", "http://localhost:5000").rstrip("/"),
        site_name=_getenv("SITE_NAME", "HealthCare Blog"),
        page_cache_enabled=_getenv("PAGE_CACHE_ENABLED", "1") not in ("0", "false", "no"),
        page_cache_ttl=max(0, ttl),
        page_cache_max_entries=max(1, max_entries),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "ADMIN_EMAIL": s.admin_email,
        "SITE_URL": s.site_url,
        "SITE_NAME": s.site_name,
        "PAGE_CACHE_ENABLED": s.page_cache_enabled,
        "PAGE_CACHE_TTL": s.page_cache_ttl,
        "PAGE_CACHE_MAX_ENTRIES": s.page_cache_max_entries,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # post bodies are HTML from the editor; keep form posts bounded
        "MAX_CONTENT_LENGTH": 5 * 1024 * 1024,
    }
