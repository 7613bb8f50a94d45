"""add aggregation window last_read_at

Revision ID: b3e9c7d1f4a2
Revises: 8d2b4f6a1e57
Create Date: 2026-10-18 09:40:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "b3e9c7d1f4a2"
down_revision = "8d2b4f6a1e57"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("aggregation_windows", sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True))
    op.execute("UPDATE aggregation_windows SET last_read_at = computed_at")
    op.alter_column("aggregation_windows", "last_read_at", nullable=False)
    op.create_index(
        op.f("ix_aggregation_windows_last_read_at"), "aggregation_windows", ["last_read_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_aggregation_windows_last_read_at"), table_name="aggregation_windows")
    op.drop_column("aggregation_windows", "last_read_at")
