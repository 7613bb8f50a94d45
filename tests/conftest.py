"""Shared fixtures: an in-memory SQLite store seeded through the ingestion path."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from keyword_tracker.db.base import Base
from keyword_tracker.db.session import create_session_factory
from keyword_tracker.queries.observations import ObservationAccessor

PROJECT = "acme"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def accessor():
    return ObservationAccessor(page_size=500)


def daily_rows(keyword: str, first_day: date, ranks: list[int], **extra) -> list[dict]:
    rows = []
    for offset, rank in enumerate(ranks):
        observed = datetime.combine(first_day + timedelta(days=offset), time(6, 0), tzinfo=timezone.utc)
        rows.append({"keyword": keyword, "position": rank, "observed_at": observed, **extra})
    return rows


@pytest.fixture
def seed(session_factory, accessor):
    def _seed(rows: list[dict], project_id: str = PROJECT):
        with session_factory() as session:
            return accessor.record_observations(session, project_id, rows)

    return _seed


@pytest.fixture
def shoes_week(seed):
    """Seven daily observations for "shoes" in the first week of 2024."""
    return seed(daily_rows("shoes", date(2024, 1, 1), [5, 4, 4, 3, 3, 2, 2]))
