"""Tests for sign-in, sign-up and access control."""
from urllib.parse import urlsplit

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.medblog import auth as auth_module
from app.medblog import create_app
from app.medblog.db import session_scope
from app.medblog.models import AuditEvent, Base, User


@pytest.fixture(autouse=True)
def _reset_login_attempts():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAIL", "Admin@Example.com")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True))
        s.add(User(email="gone@example.com", password_hash=generate_password_hash("pw"), is_active=False))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _signup(client, **fields):
    data = {"name": "Pat", "email": "pat@example.com", "password": "longenough", "confirm_password": "longenough"}
    data.update(fields)
    return client.post("/auth/signup", data=data)


def test_signup_creates_account_and_signs_in(app, client):
    r = _signup(client)
    assert r.status_code == 302
    assert urlsplit(r.headers["Location"]).path == "/"

    r = client.get("/saved-posts")
    assert r.status_code == 200

    with session_scope(app) as s:
        user = s.scalar(select(User).where(User.email == "pat@example.com"))
        assert user is not None
        assert user.display_name == "Pat"
        assert s.scalar(select(AuditEvent).where(AuditEvent.action == "auth.signup")) is not None

    # a plain account never reaches the admin area
    assert client.get("/admin/").status_code == 403


def test_signup_validation(client):
    r = _signup(client, email="admin@example.com")
    assert r.status_code == 400
    assert b"That email is reserved." in r.data

    r = _signup(client, password="short", confirm_password="short")
    assert r.status_code == 400
    assert b"Password must be at least 8 characters." in r.data

    r = _signup(client, confirm_password="different1")
    assert b"Passwords do not match." in r.data

    assert _signup(client).status_code == 302
    client.get("/auth/logout")
    r = _signup(client)
    assert b"An account with that email already exists." in r.data


def test_signed_in_users_are_bounced_from_auth_pages(client):
    _signup(client)
    for path in ("/auth/login", "/auth/signup"):
        r = client.get(path)
        assert r.status_code == 302
        assert urlsplit(r.headers["Location"]).path == "/"


def test_login_failures_are_audited(app, client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"}, follow_redirects=True)
    assert b"Invalid credentials." in r.data

    r = client.post("/auth/login", data={"email": "gone@example.com", "password": "pw"}, follow_redirects=True)
    assert b"Invalid credentials." in r.data

    with session_scope(app) as s:
        failures = s.scalars(select(AuditEvent).where(AuditEvent.action == "auth.login_failed")).all()
        assert len(failures) == 2


def test_login_redirects_to_local_next_only(client):
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "/admin/posts"},
    )
    assert r.headers["Location"].endswith("/admin/posts")
    client.get("/auth/logout")

    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "//evil.example.com/"},
    )
    assert r.headers["Location"].endswith("/admin/")


def test_login_rate_limit(client):
    for _ in range(5):
        client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"})
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    assert b"Too many login attempts" in r.data
    assert client.get("/admin/").status_code == 302
