"""create keywords and ranking observations

Revision ID: 4c7e2a91d0b3
Revises:
Create Date: 2026-10-12 09:40:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "4c7e2a91d0b3"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "keywords",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("keyword", sa.String(length=300), nullable=False),
        sa.Column(
            "tracking_status",
            sa.Enum("active", "paused", name="trackingstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("search_volume", sa.Integer(), nullable=True),
        sa.Column("tracked_since", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "keyword", name="uq_keywords_project_keyword"),
    )
    op.create_index(op.f("ix_keywords_project_id"), "keywords", ["project_id"], unique=False)
    op.create_index(op.f("ix_keywords_keyword"), "keywords", ["keyword"], unique=False)
    op.create_index(op.f("ix_keywords_tracking_status"), "keywords", ["tracking_status"], unique=False)

    op.create_table(
        "ranking_observations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("keyword_id", sa.Integer(), nullable=False),
        sa.Column("search_engine", sa.String(length=32), nullable=False),
        sa.Column("locale", sa.String(length=16), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("ranking_url", sa.String(length=1000), nullable=True),
        sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["keyword_id"], ["keywords.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "keyword_id", "search_engine", "locale", "observed_at", name="uq_ranking_observations_fact"
        ),
    )
    op.create_index(op.f("ix_ranking_observations_keyword_id"), "ranking_observations", ["keyword_id"], unique=False)
    op.create_index(op.f("ix_ranking_observations_observed_at"), "ranking_observations", ["observed_at"], unique=False)
    op.create_index(
        "ix_ranking_observations_keyword_observed",
        "ranking_observations",
        ["keyword_id", "observed_at", "id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_ranking_observations_keyword_observed", table_name="ranking_observations")
    op.drop_index(op.f("ix_ranking_observations_observed_at"), table_name="ranking_observations")
    op.drop_index(op.f("ix_ranking_observations_keyword_id"), table_name="ranking_observations")
    op.drop_table("ranking_observations")
    op.drop_index(op.f("ix_keywords_tracking_status"), table_name="keywords")
    op.drop_index(op.f("ix_keywords_keyword"), table_name="keywords")
    op.drop_index(op.f("ix_keywords_project_id"), table_name="keywords")
    op.drop_table("keywords")
    sa.Enum(name="trackingstatus").drop(op.get_bind(), checkfirst=True)
