"""add aggregation windows

Revision ID: 6a0f3d5e8c12
Revises: 4c7e2a91d0b3
Create Date: 2026-10-13 14:05:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "6a0f3d5e8c12"
down_revision = "4c7e2a91d0b3"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "aggregation_windows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cache_key", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("keyword_set_hash", sa.String(length=64), nullable=False),
        sa.Column("keywords", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("range_start", sa.Date(), nullable=False),
        sa.Column("range_end", sa.Date(), nullable=False),
        sa.Column("metric", sa.Enum("avg", "min", "max", name="metric"), nullable=False),
        sa.Column("granularity", sa.Enum("daily", "weekly", name="granularity"), nullable=False),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("sample_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("buckets", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_aggregation_windows_cache_key"), "aggregation_windows", ["cache_key"], unique=True)
    op.create_index(op.f("ix_aggregation_windows_project_id"), "aggregation_windows", ["project_id"], unique=False)
    op.create_index(
        op.f("ix_aggregation_windows_keyword_set_hash"), "aggregation_windows", ["keyword_set_hash"], unique=False
    )
    op.create_index(op.f("ix_aggregation_windows_computed_at"), "aggregation_windows", ["computed_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_aggregation_windows_computed_at"), table_name="aggregation_windows")
    op.drop_index(op.f("ix_aggregation_windows_keyword_set_hash"), table_name="aggregation_windows")
    op.drop_index(op.f("ix_aggregation_windows_project_id"), table_name="aggregation_windows")
    op.drop_index(op.f("ix_aggregation_windows_cache_key"), table_name="aggregation_windows")
    op.drop_table("aggregation_windows")
    sa.Enum(name="granularity").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="metric").drop(op.get_bind(), checkfirst=True)
