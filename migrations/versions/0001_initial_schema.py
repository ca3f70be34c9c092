"""Initial schema: libraries, series, issues, scan_state

Revision ID: 0001
Revises: None
Create Date: 2026-10-18 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def upgrade() -> None:
    # Guarded so a DB created by init_db() (create_all) can be upgraded too.

    if not _table_exists("libraries"):
        op.create_table(
            "libraries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_libraries_name", "libraries", ["name"], unique=True)
        op.create_index("ix_libraries_path", "libraries", ["path"], unique=True)

    if not _table_exists("series"):
        op.create_table(
            "series",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("cover", sa.String(), nullable=True),
            sa.Column("manga_data", sa.Text(), nullable=True),
            sa.Column(
                "library_id",
                sa.Integer(),
                sa.ForeignKey("libraries.id"),
                nullable=False,
            ),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_series_title", "series", ["title"])
        op.create_index("ix_series_path", "series", ["path"], unique=True)
        op.create_index("ix_series_library_id", "series", ["library_id"])

    if not _table_exists("issues"):
        op.create_table(
            "issues",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("file_format", sa.String(), nullable=False),
            sa.Column("volume", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("chapter", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_pages", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("current_page", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("series_id", sa.Integer(), sa.ForeignKey("series.id"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_issues_path", "issues", ["path"], unique=True)
        op.create_index("ix_issues_series_id", "issues", ["series_id"])

    if not _table_exists("scan_state"):
        op.create_table(
            "scan_state",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(), nullable=False),
            sa.Column("value", sa.String(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_scan_state_key", "scan_state", ["key"], unique=True)


def downgrade() -> None:
    op.drop_table("scan_state")
    op.drop_table("issues")
    op.drop_table("series")
    op.drop_table("libraries")
