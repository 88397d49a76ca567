"""Initial schema: image_datasets

Revision ID: 0001
Revises: None
Create Date: 2026-10-17 00:00:00
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
    # Guarded so a DB first created by SQLModel.metadata.create_all() can be
    # stamped and upgraded without errors.
    if _table_exists("image_datasets"):
        return

    op.create_table(
        "image_datasets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("rmr", sa.String(), nullable=False),
        sa.Column("series_description", sa.String(), nullable=False),
        sa.Column("path", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("glob", sa.String(), nullable=True),
        sa.Column("rep_time", sa.Float(), nullable=True),
        sa.Column("bold_reps", sa.Integer(), nullable=True),
        sa.Column("slices_per_volume", sa.Integer(), nullable=True),
        sa.Column("scanned_file", sa.String(), nullable=False),
        sa.Column("visit_id", sa.Integer(), nullable=True),
        sa.Column("thumbnail", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_image_datasets_rmr", "image_datasets", ["rmr"])
    op.create_index("ix_image_datasets_path", "image_datasets", ["path"])
    op.create_index("ix_image_datasets_visit_id", "image_datasets", ["visit_id"])


def downgrade() -> None:
    op.drop_index("ix_image_datasets_visit_id", table_name="image_datasets")
    op.drop_index("ix_image_datasets_path", table_name="image_datasets")
    op.drop_index("ix_image_datasets_rmr", table_name="image_datasets")
    op.drop_table("image_datasets")
