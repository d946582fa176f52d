import os
import sys
from pathlib import Path

from sqlalchemy import select
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.medblog.constants import DEFAULT_CATEGORIES
from app.medblog.models import Category, User
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin account and default categories in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///medblog.db").strip()
    if db_url.startswith("postgres://"):
        db_url = "postgresql://" + db_url[len("postgres://"):]

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        existing = {c.lower() for c in s.scalars(select(Category.name))}
        for name in DEFAULT_CATEGORIES:
            if name.lower() not in existing:
                s.add(Category(name=name))

        user = s.scalar(select(User).where(User.email == admin_email))
        if not user:
            user = User(
                email=admin_email,
                name="Admin",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
