from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.medblog.models import Base

if TYPE_CHECKING:
    from app.medblog.models import User

# Plain JSON on SQLite (tests), JSONB on Postgres.
StringList = JSON().with_variant(JSONB(), "postgresql")


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    posts: Mapped[list["Post"]] = relationship("Post", back_populates="category", passive_deletes=True)


class PostTag(Base):
    __tablename__ = "post_tags"
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True)
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # always lower-case


class Post(Base):
    __tablename__ = "posts"
    __table_args__ = (
        Index("idx_posts_status_updated", "status", "updated_at"),
        Index("idx_posts_category", "category_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Core
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    image_alt: Mapped[str | None] = mapped_column(String(512), nullable=True)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")  # draft | published
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)

    # SEO
    seo_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seo_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    canonical_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    primary_keyword: Mapped[str | None] = mapped_column(String(255), nullable=True)
    og_image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    no_index: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Author & dates
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_credentials: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_profile_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    author_experience_yrs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_published: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    date_modified: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reading_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes

    # Medical review
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewer_credentials: Mapped[str | None] = mapped_column(String(255), nullable=True)
    medical_review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Medical entity graph
    main_entity: Mapped[str | None] = mapped_column(String(255), nullable=True)
    medical_specialty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    medical_conditions: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
    symptoms: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
    treatments: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
    medications: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)

    # Freshness
    last_medical_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    content_version: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Intent & trust
    intent: Mapped[str | None] = mapped_column(String(128), nullable=True)
    editorial_policy_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    medical_board_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    has_disclaimer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    risk_level: Mapped[str | None] = mapped_column(String(16), nullable=True)  # low | medium | high

    # Publisher
    publisher_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    publisher_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    publisher_logo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Citations & audience
    citations: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
    target_audience: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Relationships
    category: Mapped[Category | None] = relationship("Category", back_populates="posts", lazy="selectin")
    user: Mapped["User | None"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    tags: Mapped[list[Tag]] = relationship(
        "Tag",
        secondary="post_tags",
        lazy="selectin",
        order_by="Tag.name",
    )

    @property
    def tag_names(self) -> list[str]:
        return [t.name for t in self.tags]

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @property
    def published_at(self) -> datetime:
        return self.date_published or self.created_at

    @property
    def modified_at(self) -> datetime:
        return self.date_modified or self.updated_at

    @property
    def effective_seo_title(self) -> str:
        return self.seo_title or self.title

    @property
    def effective_og_image(self) -> str | None:
        return self.og_image or self.image_url or None
