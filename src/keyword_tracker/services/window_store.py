from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from keyword_tracker.db.models import AggregationWindow
from keyword_tracker.services.aggregation import (
    AggregationKey,
    AggregationQuery,
    AggregationResult,
    Bucket,
)
from keyword_tracker.utils.dates import as_utc

logger = logging.getLogger(__name__)


def load_window(session: Session, key: AggregationKey) -> AggregationResult | None:
    row = session.execute(
        select(AggregationWindow).where(AggregationWindow.cache_key == key.digest)
    ).scalar_one_or_none()
    if row is None:
        return None
    return AggregationResult(
        key=key,
        value=row.value,
        sample_count=row.sample_count,
        buckets=tuple(Bucket.from_dict(item) for item in row.buckets or []),
        computed_at=as_utc(row.computed_at),
        source="window",
    )


def save_window(
    session: Session,
    query: AggregationQuery,
    result: AggregationResult,
    read_at: datetime | None = None,
) -> AggregationWindow:
    """Upsert the window for ``result``.

    ``read_at`` marks the window as served to a caller. Background refreshes
    leave it unset so that a window nobody reads still ages out.
    """
    key = result.key
    row = session.execute(
        select(AggregationWindow).where(AggregationWindow.cache_key == key.digest)
    ).scalar_one_or_none()
    if row is None:
        row = AggregationWindow(
            cache_key=key.digest,
            project_id=key.project_id,
            keyword_set_hash=key.keyword_set_hash,
            range_start=key.start,
            range_end=key.end,
            metric=key.metric,
            granularity=key.granularity,
            last_read_at=read_at or result.computed_at,
        )
        session.add(row)
    elif read_at is not None:
        row.last_read_at = read_at
    row.keywords = sorted(query.keywords)
    row.value = result.value
    row.sample_count = result.sample_count
    row.buckets = [bucket.to_dict() for bucket in result.buckets]
    row.computed_at = result.computed_at
    session.commit()
    return row


def window_query(row: AggregationWindow) -> AggregationQuery:
    return AggregationQuery(
        project_id=row.project_id,
        keywords=frozenset(row.keywords or []),
        start=row.range_start,
        end=row.range_end,
        metric=row.metric,
        granularity=row.granularity,
    )


def stale_windows(
    session: Session,
    computed_before: datetime,
    read_since: datetime | None = None,
    limit: int = 100,
) -> list[AggregationQuery]:
    stmt = select(AggregationWindow).where(AggregationWindow.computed_at < computed_before)
    if read_since is not None:
        stmt = stmt.where(AggregationWindow.last_read_at >= read_since)
    rows = session.execute(stmt.order_by(AggregationWindow.computed_at.asc()).limit(limit)).scalars()
    return [window_query(row) for row in rows]


def mark_window_read(session: Session, key: AggregationKey, read_at: datetime) -> None:
    session.execute(
        update(AggregationWindow)
        .where(AggregationWindow.cache_key == key.digest)
        .values(last_read_at=read_at)
    )
    session.commit()


def purge_expired_windows(session: Session, older_than: datetime) -> int:
    """Delete windows nobody has read since ``older_than``."""
    result = session.execute(
        delete(AggregationWindow).where(AggregationWindow.last_read_at < older_than)
    )
    session.commit()
    if result.rowcount:
        logger.info("Purged %d aggregation windows unread since %s", result.rowcount, older_than)
    return result.rowcount or 0


def invalidate_windows(session: Session, project_id: str, start: date, end: date) -> int:
    """Drop persisted windows of a project whose range overlaps [start, end]."""
    result = session.execute(
        delete(AggregationWindow).where(
            AggregationWindow.project_id == project_id,
            AggregationWindow.range_start <= end,
            AggregationWindow.range_end >= start,
        )
    )
    session.commit()
    return result.rowcount or 0
