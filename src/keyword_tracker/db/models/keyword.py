from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from keyword_tracker.db.base import Base


class TrackingStatus(str, Enum):
    active = "active"
    paused = "paused"


class Keyword(Base):
    __tablename__ = "keywords"
    __table_args__ = (UniqueConstraint("project_id", "keyword", name="uq_keywords_project_keyword"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    keyword: Mapped[str] = mapped_column(String(300), index=True)
    tracking_status: Mapped[TrackingStatus] = mapped_column(
        SAEnum(TrackingStatus), default=TrackingStatus.active, index=True
    )
    priority: Mapped[int] = mapped_column(Integer, default=100)
    search_volume: Mapped[int | None] = mapped_column(Integer)
    tracked_since: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
