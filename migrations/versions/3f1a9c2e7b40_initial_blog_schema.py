"""initial blog schema

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-19 09:12:41.208133

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

StringList = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create users, audit_events, categories, tags, posts, post_tags and saved_posts."""
    # Check if tables already exist (idempotent)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("name", sa.String(255), nullable=False, server_default=""),
            sa.Column("image_url", sa.String(1024), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )
        op.create_index("idx_audit_events_created", "audit_events", ["created_at"])
        op.create_index("idx_audit_events_action", "audit_events", ["action"])

    if "categories" not in existing_tables:
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(128), nullable=False, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "tags" not in existing_tables:
        op.create_table(
            "tags",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(128), nullable=False, unique=True),
        )

    if "posts" not in existing_tables:
        op.create_table(
            "posts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            # Core
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("slug", sa.String(255), nullable=False, unique=True),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("image_url", sa.String(1024), nullable=False, server_default=""),
            sa.Column("image_alt", sa.String(512), nullable=True),
            sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True),
            # SEO
            sa.Column("seo_title", sa.String(255), nullable=True),
            sa.Column("seo_description", sa.Text(), nullable=True),
            sa.Column("canonical_url", sa.String(1024), nullable=True),
            sa.Column("primary_keyword", sa.String(255), nullable=True),
            sa.Column("og_image", sa.String(1024), nullable=True),
            sa.Column("no_index", sa.Boolean(), nullable=False, server_default=sa.false()),
            # Author & dates
            sa.Column("author", sa.String(255), nullable=True),
            sa.Column("author_credentials", sa.String(255), nullable=True),
            sa.Column("author_profile_url", sa.String(1024), nullable=True),
            sa.Column("author_experience_yrs", sa.Integer(), nullable=True),
            sa.Column("date_published", sa.DateTime(), nullable=True),
            sa.Column("date_modified", sa.DateTime(), nullable=True),
            sa.Column("reading_time", sa.Integer(), nullable=True),
            # Medical review
            sa.Column("reviewed_by", sa.String(255), nullable=True),
            sa.Column("reviewer_credentials", sa.String(255), nullable=True),
            sa.Column("medical_review_date", sa.DateTime(), nullable=True),
            # Medical entity graph
            sa.Column("main_entity", sa.String(255), nullable=True),
            sa.Column("medical_specialty", sa.String(255), nullable=True),
            sa.Column("medical_conditions", StringList, nullable=False, server_default="[]"),
            sa.Column("symptoms", StringList, nullable=False, server_default="[]"),
            sa.Column("treatments", StringList, nullable=False, server_default="[]"),
            sa.Column("medications", StringList, nullable=False, server_default="[]"),
            # Freshness
            sa.Column("last_medical_update", sa.DateTime(), nullable=True),
            sa.Column("content_version", sa.String(64), nullable=True),
            # Intent & trust
            sa.Column("intent", sa.String(128), nullable=True),
            sa.Column("editorial_policy_url", sa.String(1024), nullable=True),
            sa.Column("medical_board_url", sa.String(1024), nullable=True),
            sa.Column("has_disclaimer", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("risk_level", sa.String(16), nullable=True),
            # Publisher
            sa.Column("publisher_name", sa.String(255), nullable=True),
            sa.Column("publisher_url", sa.String(1024), nullable=True),
            sa.Column("publisher_logo_url", sa.String(1024), nullable=True),
            # Citations & audience
            sa.Column("citations", StringList, nullable=False, server_default="[]"),
            sa.Column("target_audience", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_posts_status_updated", "posts", ["status", "updated_at"])
        op.create_index("idx_posts_category", "posts", ["category_id"])

    if "post_tags" not in existing_tables:
        op.create_table(
            "post_tags",
            sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
        )

    if "saved_posts" not in existing_tables:
        op.create_table(
            "saved_posts",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )


def downgrade() -> None:
    op.drop_table("saved_posts")
    op.drop_table("post_tags")
    op.drop_index("idx_posts_category", table_name="posts")
    op.drop_index("idx_posts_status_updated", table_name="posts")
    op.drop_table("posts")
    op.drop_table("tags")
    op.drop_table("categories")
    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_index("idx_audit_events_created", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("users")
