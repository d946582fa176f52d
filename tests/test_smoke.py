import pytest
from werkzeug.security import generate_password_hash

from app.medblog import create_app
from app.medblog.db import session_scope
from app.medblog.models import Base, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAIL", "admin@example.com")

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True))

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_robots_txt(client):
    r = client.get("/robots.txt")
    assert r.status_code == 200
    assert r.mimetype == "text/plain"
    assert b"Disallow: /admin/" in r.data


def test_home_page_renders_empty(client):
    r = client.get("/")
    assert r.status_code == 200
    assert b"No articles published yet." in r.data


def test_login_and_admin_access(client):
    # Anonymous is sent to the login page
    r = client.get("/admin/")
    assert r.status_code == 302

    # Login
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/")

    # Now admin should be accessible
    r = client.get("/admin/")
    assert r.status_code == 200


def test_production_guardrails(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("DATABASE_URL", "postgres://user:pw@db.internal/blog")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app()

    monkeypatch.setenv("SECRET_KEY", "a-strong-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()
