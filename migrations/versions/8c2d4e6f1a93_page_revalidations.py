"""page revalidations

Revision ID: 8c2d4e6f1a93
Revises: 3f1a9c2e7b40
Create Date: 2026-10-20 10:04:17.552901

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c2d4e6f1a93'
down_revision: Union[str, Sequence[str], None] = '3f1a9c2e7b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create page_revalidations so cache revalidation reaches every worker."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    if "page_revalidations" in set(inspector.get_table_names()):
        return

    op.create_table(
        "page_revalidations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("pattern", sa.String(1024), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_page_revalidations_pattern_created",
        "page_revalidations",
        ["pattern", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_page_revalidations_pattern_created", table_name="page_revalidations")
    op.drop_table("page_revalidations")
