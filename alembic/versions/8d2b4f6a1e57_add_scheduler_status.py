"""add scheduler status

Revision ID: 8d2b4f6a1e57
Revises: 6a0f3d5e8c12
Create Date: 2026-10-14 10:20:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "8d2b4f6a1e57"
down_revision = "6a0f3d5e8c12"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "scheduler_status",
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("running", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_job", sa.String(length=64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    op.drop_table("scheduler_status")
