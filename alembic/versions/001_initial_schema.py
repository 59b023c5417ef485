"""Initial schema - feeds, bookmarks, thoughts and full-text indexes

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates the base tables, then the FTS5 shadow indexes and the triggers that
keep them in sync. Databases created by app.db.init_db already match this
revision: run ``alembic stamp head`` on them.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from app.db import SHADOW_INDEXES


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NOW = sa.text("(datetime('now'))")


def upgrade() -> None:
    """Create all tables, shadow indexes and triggers."""
    op.create_table(
        "bookmarks",
        sa.Column("id", sa.CHAR(16), primary_key=True),
        sa.Column("created", sa.DateTime(), server_default=NOW),
        sa.Column("updated", sa.DateTime(), server_default=NOW),
        sa.Column("title", sa.String(64), nullable=False),
        sa.Column("url", sa.String(255), nullable=False, unique=True),
        sa.Column("excerpt", sa.Text(), nullable=False, server_default=""),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("tags", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.text("0")),
    )

    op.create_table(
        "feeds",
        sa.Column("id", sa.CHAR(16), primary_key=True),
        sa.Column("created", sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column("updated", sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column("refreshed", sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column("last_authored", sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column("title", sa.String(64), nullable=False),
        sa.Column("url", sa.String(255), nullable=False, unique=True),
        sa.Column("etag", sa.String(200), nullable=False, server_default=""),
        sa.Column("tags", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("items", sa.JSON(), nullable=False, server_default="[]"),
    )
    op.create_index("idx_feeds_last_authored", "feeds", ["last_authored"])
    op.create_index("idx_feeds_refreshed", "feeds", ["refreshed"])

    op.create_table(
        "thoughts",
        sa.Column("id", sa.CHAR(16), primary_key=True),
        sa.Column("created", sa.DateTime(), nullable=False),
        sa.Column("updated", sa.DateTime(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False, unique=True),
        sa.Column("tags", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
    )

    for statement in SHADOW_INDEXES:
        op.execute(statement)


def downgrade() -> None:
    """Drop all tables; dropping a table drops its triggers."""
    op.execute("DROP TABLE IF EXISTS thoughts_fts")
    op.execute("DROP TABLE IF EXISTS bookmarks_fts")
    op.drop_table("thoughts")
    op.drop_table("feeds")
    op.drop_table("bookmarks")
