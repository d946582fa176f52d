"""Tests for the admin post editor."""
import json
from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.medblog import create_app
from app.medblog.db import session_scope
from app.medblog.models import AuditEvent, Base, Category, Post, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAIL", "admin@example.com")
    monkeypatch.setenv("SITE_URL", "https://blog.test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True))
        s.add(User(email="reader@example.com", password_hash=generate_password_hash("pw"), is_active=True))
        s.add(Category(name="Nutrition"))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=True)


def _csrf(client):
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def _create(client, **fields):
    data = {
        "csrf_token": _csrf(client),
        "title": "Vitamin D and Bone Health",
        "slug": "",
        "content": "<p>Vitamin D helps the body absorb calcium.</p>",
        "status": "published",
        "tags": "Vitamins, Bones",
        "has_disclaimer": ["0", "1"],
        "no_index": "0",
        "citations": "Holick MF, et al. J Clin Endocrinol Metab 2011",
    }
    data.update(fields)
    return client.post("/admin/posts/new", data=data)


def test_admin_pages_require_login(client):
    for path in ("/admin/", "/admin/posts", "/admin/posts/new", "/admin/categories", "/admin/audit"):
        r = client.get(path)
        assert r.status_code == 302
        assert "/auth/login" in r.headers["Location"]


def test_non_admin_is_forbidden(client):
    _login(client, "reader@example.com")
    r = client.get("/admin/posts")
    assert r.status_code == 403


def test_create_post_via_form(app, client):
    _login(client)
    r = _create(client)
    assert r.status_code == 302
    assert "/admin/posts/" in r.headers["Location"]

    with session_scope(app) as s:
        post = s.scalar(select(Post).where(Post.slug == "vitamin-d-and-bone-health"))
        assert post is not None
        assert post.status == "published"
        assert post.tag_names == ["bones", "vitamins"]
        assert post.has_disclaimer is True
        assert post.citations == ["Holick MF, et al. J Clin Endocrinol Metab 2011"]
        assert post.canonical_url == "https://blog.test/blog/posts/vitamin-d-and-bone-health"

        ev = s.scalar(select(AuditEvent).where(AuditEvent.action == "post.create"))
        assert ev.actor_user_email == "admin@example.com"
        assert ev.request_id


def test_create_post_validation_errors_rerender_form(app, client):
    _login(client)
    r = _create(client, title="ab", content="", canonical_url="ftp://nope")
    assert r.status_code == 400
    assert b"Title must be at least 3 characters." in r.data
    assert b"Canonical url must be a valid http(s) URL." in r.data
    with session_scope(app) as s:
        assert s.scalar(select(Post.id)) is None


def test_duplicate_slug_rejected(client):
    _login(client)
    assert _create(client).status_code == 302
    r = _create(client)
    assert r.status_code == 400
    assert b"Slug already in use." in r.data


def test_missing_csrf_is_rejected(app, client):
    _login(client)
    r = client.post("/admin/posts/new", data={"title": "No token here", "content": "Body text"})
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.scalar(select(Post.id)) is None


def test_edit_post_keeps_unsubmitted_fields(app, client):
    _login(client)
    _create(client, author="Dr. Grace")
    with session_scope(app) as s:
        post_id = s.scalar(select(Post.id))
        nutrition_id = s.scalar(select(Category.id).where(Category.name == "Nutrition"))

    r = client.get(f"/admin/posts/{post_id}")
    assert r.status_code == 200
    assert b"Dr. Grace" in r.data

    r = client.post(
        f"/admin/posts/{post_id}",
        data={
            "csrf_token": _csrf(client),
            "title": "Vitamin D: What You Need to Know",
            "slug": "vitamin-d-and-bone-health",
            "content": "<p>Updated body.</p>",
            "category_id": str(nutrition_id),
            "tags": "vitamins",
            "has_disclaimer": "0",
        },
    )
    assert r.status_code == 302

    with session_scope(app) as s:
        post = s.get(Post, post_id)
        assert post.title == "Vitamin D: What You Need to Know"
        assert post.author == "Dr. Grace"
        assert post.category.name == "Nutrition"
        assert post.tag_names == ["vitamins"]
        assert post.has_disclaimer is False
        assert post.date_modified is not None

        ev = s.scalar(select(AuditEvent).where(AuditEvent.action == "post.update"))
        changes = json.loads(ev.metadata_json)["changes"]
        assert "title" in changes
        assert "category_id" in changes


def test_delete_post(app, client):
    _login(client)
    _create(client)
    with session_scope(app) as s:
        post_id = s.scalar(select(Post.id))

    r = client.post(f"/admin/posts/{post_id}/delete", data={"csrf_token": _csrf(client)})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Post, post_id) is None
        assert s.scalar(select(AuditEvent).where(AuditEvent.action == "post.delete")) is not None

    assert client.get("/blog/posts/vitamin-d-and-bone-health").status_code == 404


def test_admin_list_shows_drafts_and_filters_by_tag(client):
    _login(client)
    _create(client, title="Published piece", tags="sleep")
    _create(client, title="Draft piece", status="draft", tags="stress")

    r = client.get("/admin/posts")
    assert b"Published piece" in r.data
    assert b"Draft piece" in r.data

    r = client.get("/admin/posts?tag=stress")
    assert b"Draft piece" in r.data
    assert b"Published piece" not in r.data


def test_dashboard_and_audit(client):
    _login(client)
    _create(client)
    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Vitamin D and Bone Health" in r.data

    r = client.get("/admin/audit?action=post.")
    assert r.status_code == 200
    assert b"post.create" in r.data


def test_resaving_the_form_keeps_stored_times(app, client):
    _login(client)
    _create(client)
    published = datetime(2024, 3, 5, 14, 32, 10, 250000)
    reviewed = datetime(2024, 2, 1, 9, 15, 0)
    with session_scope(app) as s:
        post = s.scalar(select(Post))
        post.date_published = published
        post.medical_review_date = reviewed
        post_id = post.id

    r = client.get(f"/admin/posts/{post_id}")
    assert b'value="2024-03-05T14:32:10"' in r.data

    r = client.post(
        f"/admin/posts/{post_id}",
        data={
            "csrf_token": _csrf(client),
            "title": "Vitamin D and Bone Health",
            "slug": "vitamin-d-and-bone-health",
            "content": "<p>Vitamin D helps the body absorb calcium.</p>",
            "date_published": "2024-03-05T14:32:10",
            "medical_review_date": "2024-02-01",
            "last_medical_update": "2024-04-10T08:00:00",
        },
    )
    assert r.status_code == 302

    with session_scope(app) as s:
        post = s.get(Post, post_id)
        assert post.date_published == published
        assert post.medical_review_date == reviewed
        assert post.last_medical_update == datetime(2024, 4, 10, 8, 0, 0)


def _failing_commit(self):
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def test_create_failure_rerenders_form_with_message(app, client, monkeypatch):
    _login(client)
    with monkeypatch.context() as m:
        m.setattr(Session, "commit", _failing_commit)
        r = _create(client)
    assert r.status_code == 500
    assert b"Failed to create post" in r.data
    assert b"Vitamin D and Bone Health" in r.data  # submitted values kept
    with session_scope(app) as s:
        assert s.scalar(select(Post.id)) is None


def test_delete_failure_flashes_and_redirects_to_editor(app, client, monkeypatch):
    _login(client)
    _create(client)
    with session_scope(app) as s:
        post_id = s.scalar(select(Post.id))

    token = _csrf(client)
    with monkeypatch.context() as m:
        m.setattr(Session, "commit", _failing_commit)
        r = client.post(f"/admin/posts/{post_id}/delete", data={"csrf_token": token})
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/admin/posts/{post_id}")

    r = client.get(f"/admin/posts/{post_id}")
    assert b"Something went wrong" in r.data
    with session_scope(app) as s:
        assert s.get(Post, post_id) is not None
