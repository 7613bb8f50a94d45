from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import JSON, Date, DateTime, Enum as SAEnum, Float, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from keyword_tracker.db.base import Base


class Metric(str, Enum):
    avg = "avg"
    min = "min"
    max = "max"


class Granularity(str, Enum):
    daily = "daily"
    weekly = "weekly"


class AggregationWindow(Base):
    __tablename__ = "aggregation_windows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cache_key: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    keyword_set_hash: Mapped[str] = mapped_column(String(64), index=True)
    keywords: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"))
    range_start: Mapped[date] = mapped_column(Date)
    range_end: Mapped[date] = mapped_column(Date)
    metric: Mapped[Metric] = mapped_column(SAEnum(Metric))
    granularity: Mapped[Granularity] = mapped_column(SAEnum(Granularity))

    value: Mapped[float | None] = mapped_column(Float)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)
    buckets: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"))

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    last_read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
