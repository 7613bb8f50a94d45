"""Read access to ranking observations.

Every call takes the caller's session; nothing here owns a connection.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, NamedTuple

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from keyword_tracker.db.models import Keyword, RankingObservation, TrackingStatus
from keyword_tracker.errors import ComputationFailure, InvalidRange, NotFound
from keyword_tracker.utils.dates import as_utc, day_bounds, parse_datetime
from keyword_tracker.utils.keywords import normalize_keyword, normalize_keywords

logger = logging.getLogger(__name__)


class ObservationCursor(NamedTuple):
    observed_at: datetime
    id: int


@dataclass(frozen=True)
class ObservationRow:
    id: int
    keyword_id: int
    keyword: str
    search_engine: str
    locale: str
    position: int
    ranking_url: str | None
    observed_at: datetime


@dataclass(frozen=True)
class ObservationPage:
    items: list[ObservationRow]
    next_cursor: ObservationCursor | None


@dataclass(frozen=True)
class IngestResult:
    inserted: int
    skipped: int
    keywords_created: int
    first_observed: datetime | None
    last_observed: datetime | None


def validate_request(keywords: Iterable[str], start: date, end: date) -> frozenset[str]:
    normalized = normalize_keywords(keywords)
    if not normalized:
        raise InvalidRange("keyword set must not be empty")
    if start > end:
        raise InvalidRange(f"start {start.isoformat()} is after end {end.isoformat()}")
    return normalized


class ObservationAccessor:
    def __init__(self, page_size: int = 500) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._page_size = page_size

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    def _execute(self, session: Session, stmt):
        try:
            return session.execute(stmt)
        except OperationalError:
            session.rollback()
            raise

    def _read(self, session: Session, stmt):
        try:
            return self._execute(session, stmt)
        except SQLAlchemyError as exc:
            raise ComputationFailure(f"observation store unavailable: {exc}") from exc

    def resolve_keywords(
        self, session: Session, project_id: str, keywords: Iterable[str]
    ) -> list[Keyword]:
        normalized = normalize_keywords(keywords)
        if not normalized:
            raise InvalidRange("keyword set must not be empty")
        stmt = (
            select(Keyword)
            .where(Keyword.project_id == project_id, Keyword.keyword.in_(sorted(normalized)))
            .order_by(Keyword.id)
        )
        found = list(self._read(session, stmt).scalars())
        if not found:
            raise NotFound(f"no tracked keyword matches {sorted(normalized)} in project {project_id}")
        if len(found) < len(normalized):
            missing = normalized - {row.keyword for row in found}
            logger.debug("Ignoring unknown keywords %s for project %s", sorted(missing), project_id)
        return found

    def fetch_observations(
        self,
        session: Session,
        project_id: str,
        keywords: Iterable[str],
        start: date,
        end: date,
        *,
        cursor: ObservationCursor | None = None,
        limit: int | None = None,
    ) -> ObservationPage:
        normalized = validate_request(keywords, start, end)
        limit = self._page_size if limit is None else limit
        if limit <= 0:
            raise InvalidRange("page limit must be positive")

        keyword_ids = [row.id for row in self.resolve_keywords(session, project_id, normalized)]
        lower, upper = day_bounds(start, end)

        stmt = (
            select(
                RankingObservation.id,
                RankingObservation.keyword_id,
                Keyword.keyword,
                RankingObservation.search_engine,
                RankingObservation.locale,
                RankingObservation.position,
                RankingObservation.ranking_url,
                RankingObservation.observed_at,
            )
            .join(Keyword, Keyword.id == RankingObservation.keyword_id)
            .where(
                RankingObservation.keyword_id.in_(keyword_ids),
                RankingObservation.observed_at >= lower,
                RankingObservation.observed_at < upper,
            )
            .order_by(RankingObservation.observed_at.asc(), RankingObservation.id.asc())
            .limit(limit + 1)
        )
        if cursor is not None:
            stmt = stmt.where(
                or_(
                    RankingObservation.observed_at > cursor.observed_at,
                    and_(
                        RankingObservation.observed_at == cursor.observed_at,
                        RankingObservation.id > cursor.id,
                    ),
                )
            )

        rows = [ObservationRow(**row._asdict()) for row in self._read(session, stmt)]
        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            last = rows[-1]
            next_cursor = ObservationCursor(last.observed_at, last.id)
        return ObservationPage(items=rows, next_cursor=next_cursor)

    def iter_observations(
        self,
        session: Session,
        project_id: str,
        keywords: Iterable[str],
        start: date,
        end: date,
    ) -> Iterator[ObservationRow]:
        keywords = validate_request(keywords, start, end)
        cursor: ObservationCursor | None = None
        while True:
            page = self.fetch_observations(session, project_id, keywords, start, end, cursor=cursor)
            yield from page.items
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def record_observations(
        self, session: Session, project_id: str, rows: Iterable[Mapping[str, Any]]
    ) -> IngestResult:
        """Insert new observation facts, creating keywords on first sight.

        Rows already stored (same keyword, engine, locale and timestamp) are
        skipped, never updated. Commits on success.
        """
        prepared = [_prepare_row(row) for row in rows]
        if not prepared:
            return IngestResult(0, 0, 0, None, None)

        texts = {row["keyword"] for row in prepared}
        existing = {
            row.keyword: row
            for row in session.execute(
                select(Keyword).where(Keyword.project_id == project_id, Keyword.keyword.in_(sorted(texts)))
            ).scalars()
        }
        created = 0
        for row in prepared:
            if row["keyword"] in existing:
                continue
            keyword = Keyword(
                project_id=project_id,
                keyword=row["keyword"],
                tracking_status=TrackingStatus.active,
                priority=row["priority"],
                search_volume=row["search_volume"],
            )
            session.add(keyword)
            existing[row["keyword"]] = keyword
            created += 1
        session.flush()

        first = min(row["observed_at"] for row in prepared)
        last = max(row["observed_at"] for row in prepared)
        keyword_ids = [existing[text].id for text in texts]
        stored = {
            (keyword_id, engine, locale, as_utc(observed_at))
            for keyword_id, engine, locale, observed_at in session.execute(
                select(
                    RankingObservation.keyword_id,
                    RankingObservation.search_engine,
                    RankingObservation.locale,
                    RankingObservation.observed_at,
                ).where(
                    RankingObservation.keyword_id.in_(keyword_ids),
                    RankingObservation.observed_at >= first,
                    RankingObservation.observed_at <= last,
                )
            )
        }

        inserted = 0
        for row in prepared:
            keyword_id = existing[row["keyword"]].id
            fact = (keyword_id, row["search_engine"], row["locale"], row["observed_at"])
            if fact in stored:
                continue
            stored.add(fact)
            session.add(
                RankingObservation(
                    keyword_id=keyword_id,
                    search_engine=row["search_engine"],
                    locale=row["locale"],
                    position=row["position"],
                    ranking_url=row["ranking_url"],
                    observed_at=row["observed_at"],
                )
            )
            inserted += 1
        session.commit()

        skipped = len(prepared) - inserted
        logger.info(
            "Recorded %d observations for project %s (%d skipped, %d new keywords)",
            inserted,
            project_id,
            skipped,
            created,
        )
        return IngestResult(inserted, skipped, created, first, last)


def _prepare_row(row: Mapping[str, Any]) -> dict[str, Any]:
    keyword = normalize_keyword(row.get("keyword") or "")
    if not keyword:
        raise InvalidRange("observation is missing its keyword")
    if row.get("observed_at") in (None, ""):
        raise InvalidRange(f"observation for {keyword!r} is missing observed_at")
    try:
        position = int(row["position"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidRange(f"observation for {keyword!r} has no valid position") from exc
    if position < 1:
        raise InvalidRange(f"position must be >= 1, got {position}")
    try:
        observed_at = parse_datetime(row["observed_at"])
    except ValueError as exc:
        raise InvalidRange(f"observation for {keyword!r} has a malformed observed_at") from exc
    priority = row.get("priority")
    if priority is None or priority == "":
        priority = 100
    else:
        try:
            priority = int(priority)
        except (TypeError, ValueError) as exc:
            raise InvalidRange(f"observation for {keyword!r} has a malformed priority") from exc
    return {
        "keyword": keyword,
        "position": position,
        "observed_at": observed_at,
        "search_engine": str(row.get("search_engine") or "google").strip().lower(),
        "locale": str(row.get("locale") or "en-US").strip(),
        "ranking_url": row.get("ranking_url") or None,
        "priority": priority,
        "search_volume": row.get("search_volume"),
    }
