"""Tests for the public blog pages, search, view tracking and saved posts."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.medblog import create_app
from app.medblog.db import session_scope
from app.medblog.models import Base, Category, Post, Tag, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAIL", "admin@example.com")
    monkeypatch.setenv("PAGE_CACHE_ENABLED", "0")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        reader = User(email="reader@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        dermatology = Category(name="Dermatology")
        pediatrics = Category(name="Pediatrics")
        eczema = Tag(name="eczema")
        s.add_all([admin, reader, dermatology, pediatrics, eczema])
        s.flush()

        base = datetime(2024, 1, 1, 8, 0, 0)
        # 12 published dermatology posts, newest last
        for i in range(12):
            s.add(
                Post(
                    user_id=admin.id,
                    title=f"Skin Care Guide {i:02d}",
                    slug=f"skin-care-guide-{i:02d}",
                    content=f"<p>Moisturising routine number {i}.</p>",
                    status="published",
                    category_id=dermatology.id,
                    tags=[eczema] if i % 2 == 0 else [],
                    created_at=base,
                    updated_at=base + timedelta(minutes=i),
                )
            )
        s.add(
            Post(
                user_id=admin.id,
                title="Unreleased Vaccine Schedule",
                slug="unreleased-vaccine-schedule",
                content="<p>Draft body.</p>",
                status="draft",
                category_id=pediatrics.id,
                tags=[eczema],
                created_at=base,
                updated_at=base + timedelta(hours=1),
            )
        )

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email):
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=True)


def _csrf(client):
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def test_index_paginates_published_posts(client):
    r = client.get("/")
    assert r.status_code == 200
    assert b"Skin Care Guide 11" in r.data  # newest first
    assert b"Skin Care Guide 02" in r.data
    assert b"Skin Care Guide 01" not in r.data
    assert b"Unreleased Vaccine Schedule" not in r.data
    assert b"Page 1 of 2" in r.data

    r = client.get("/blog?page=2")
    assert r.status_code == 200
    assert b"Skin Care Guide 01" in r.data
    assert b"Skin Care Guide 00" in r.data
    assert b"Skin Care Guide 11" not in r.data


def test_bad_page_number_falls_back_to_first_page(client):
    r = client.get("/blog?page=-4")
    assert r.status_code == 200
    assert b"Page 1 of 2" in r.data
    r = client.get("/blog?page=abc")
    assert r.status_code == 200


def test_post_detail_and_draft_visibility(client):
    r = client.get("/blog/posts/skin-care-guide-03")
    assert r.status_code == 200
    assert b"Moisturising routine number 3." in r.data

    assert client.get("/blog/posts/unreleased-vaccine-schedule").status_code == 404
    assert client.get("/blog/posts/does-not-exist").status_code == 404

    _login(client, "reader@example.com")
    assert client.get("/blog/posts/unreleased-vaccine-schedule").status_code == 404
    client.get("/auth/logout")

    _login(client, "admin@example.com")
    r = client.get("/blog/posts/unreleased-vaccine-schedule")
    assert r.status_code == 200
    assert b"Draft" in r.data


def test_category_and_tag_pages(app, client):
    with session_scope(app) as s:
        derm_id = s.scalar(select(Category.id).where(Category.name == "Dermatology"))
        peds_id = s.scalar(select(Category.id).where(Category.name == "Pediatrics"))

    r = client.get(f"/blog/category/{derm_id}")
    assert r.status_code == 200
    assert b"Dermatology" in r.data
    assert b"Skin Care Guide 11" in r.data

    r = client.get(f"/blog/category/{peds_id}")
    assert r.status_code == 200
    assert b"Unreleased Vaccine Schedule" not in r.data

    assert client.get("/blog/category/9999").status_code == 404

    r = client.get("/blog/tag/Eczema")
    assert r.status_code == 200
    assert b"Skin Care Guide 10" in r.data
    assert b"Skin Care Guide 09" not in r.data
    assert b"Unreleased Vaccine Schedule" not in r.data


def test_search_api(client):
    r = client.get("/api/search?q=s")
    assert r.status_code == 200
    assert r.json == {"results": []}

    r = client.get("/api/search?q=skin care")
    results = r.json["results"]
    posts = [x for x in results if x["type"] == "post"]
    assert len(posts) == 10  # capped
    assert posts[0]["title"] == "Skin Care Guide 11"
    assert posts[0]["url"] == "/blog/posts/skin-care-guide-11"

    r = client.get("/api/search?q=eczema")
    titles = {x["title"] for x in r.json["results"] if x["type"] == "post"}
    assert "Skin Care Guide 00" in titles
    assert "Unreleased Vaccine Schedule" not in titles

    r = client.get("/api/search?q=derma")
    categories = [x for x in r.json["results"] if x["type"] == "category"]
    assert [c["name"] for c in categories] == ["Dermatology"]


def test_search_page(client):
    r = client.get("/search?q=routine")
    assert r.status_code == 200
    assert b"Skin Care Guide" in r.data
    r = client.get("/search?q=x")
    assert b"at least 2 characters" in r.data


def test_view_counter_api(app, client):
    with session_scope(app) as s:
        post_id = s.scalar(select(Post.id).where(Post.slug == "skin-care-guide-05"))

    r = client.post(f"/api/posts/{post_id}/view")
    assert r.status_code == 200
    assert r.json == {"ok": True, "views": 1}
    r = client.post(f"/api/posts/{post_id}/view")
    assert r.json["views"] == 2

    r = client.post("/api/posts/9999/view")
    assert r.status_code == 404
    assert r.json["ok"] is False


def test_saved_posts(app, client):
    assert client.get("/saved-posts").status_code == 302

    with session_scope(app) as s:
        post_id = s.scalar(select(Post.id).where(Post.slug == "skin-care-guide-07"))

    _login(client, "reader@example.com")
    r = client.post(f"/blog/posts/{post_id}/save", data={"csrf_token": _csrf(client)})
    assert r.status_code == 302

    r = client.get("/saved-posts")
    assert r.status_code == 200
    assert b"Skin Care Guide 07" in r.data

    client.post(f"/blog/posts/{post_id}/save", data={"csrf_token": _csrf(client)})
    r = client.get("/saved-posts")
    assert b"Skin Care Guide 07" not in r.data


def test_public_posts_api_lists_published_newest_first(client):
    r = client.get("/api/posts")
    assert r.status_code == 200
    posts = r.json["posts"]
    assert len(posts) == 12
    assert posts[0]["slug"] == "skin-care-guide-11"
    assert set(posts[0]) == {"id", "title", "slug", "image_url"}
    assert all(p["slug"] != "unreleased-vaccine-schedule" for p in posts)

    r = client.get("/api/posts?limit=3")
    assert [p["slug"] for p in r.json["posts"]] == ["skin-care-guide-11", "skin-care-guide-10", "skin-care-guide-09"]
