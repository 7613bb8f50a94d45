from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from keyword_tracker.db.base import Base


class RankingObservation(Base):
    __tablename__ = "ranking_observations"
    __table_args__ = (
        UniqueConstraint(
            "keyword_id",
            "search_engine",
            "locale",
            "observed_at",
            name="uq_ranking_observations_fact",
        ),
        Index("ix_ranking_observations_keyword_observed", "keyword_id", "observed_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    keyword_id: Mapped[int] = mapped_column(ForeignKey("keywords.id"), index=True)
    search_engine: Mapped[str] = mapped_column(String(32), default="google")
    locale: Mapped[str] = mapped_column(String(16), default="en-US")
    position: Mapped[int] = mapped_column(Integer)
    ranking_url: Mapped[str | None] = mapped_column(String(1000))
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
