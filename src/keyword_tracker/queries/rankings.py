from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from keyword_tracker.db.models import Keyword, RankingObservation, TrackingStatus
from keyword_tracker.errors import InvalidRange
from keyword_tracker.utils.dates import as_utc, day_bounds, week_start
from keyword_tracker.utils.keywords import normalize_keywords

PAGE_ONE_CUTOFF = 11


@dataclass(frozen=True)
class KeywordRanking:
    keyword_id: int
    keyword: str
    priority: int
    search_volume: int | None
    position: int | None
    previous_position: int | None
    ranking_url: str | None
    observed_at: datetime | None
    search_engine: str | None = None
    locale: str | None = None

    @property
    def position_change(self) -> int | None:
        """Positive when the keyword moved up since the previous observation."""
        if self.position is None or self.previous_position is None:
            return None
        return self.previous_position - self.position


@dataclass(frozen=True)
class StrikingDistanceKeyword:
    keyword_id: int
    keyword: str
    search_volume: int | None
    position: int
    ranking_url: str | None
    distance_to_page_one: float


@dataclass(frozen=True)
class CannibalizationIssue:
    keyword_id: int
    keyword: str
    urls: tuple[str, ...]

    @property
    def severity(self) -> str:
        count = len(self.urls)
        if count > 3:
            return "high"
        if count > 2:
            return "medium"
        return "low"


@dataclass(frozen=True)
class WeekSummary:
    week_start: date
    tracked_keywords: int
    ranked_keywords: int
    avg_position: float | None
    top10_count: int


@dataclass(frozen=True)
class DashboardMetrics:
    current: WeekSummary
    previous: WeekSummary
    cannibalization_issues: int


@dataclass(frozen=True)
class GroupPerformance:
    keyword_count: int
    ranked_keywords: int
    avg_position: float | None
    improved: int
    declined: int
    stable: int


def _latest_observations(
    project_id: str, depth: int, search_engine: str | None = None, locale: str | None = None
):
    """Last ``depth`` observations of every (keyword, engine, locale) series."""
    ranked = (
        select(
            RankingObservation.id,
            RankingObservation.keyword_id,
            RankingObservation.search_engine,
            RankingObservation.locale,
            RankingObservation.position,
            RankingObservation.ranking_url,
            RankingObservation.observed_at,
            func.row_number()
            .over(
                partition_by=(
                    RankingObservation.keyword_id,
                    RankingObservation.search_engine,
                    RankingObservation.locale,
                ),
                order_by=(RankingObservation.observed_at.desc(), RankingObservation.id.desc()),
            )
            .label("rn"),
        )
        .join(Keyword, Keyword.id == RankingObservation.keyword_id)
        .where(Keyword.project_id == project_id)
    )
    if search_engine:
        ranked = ranked.where(RankingObservation.search_engine == search_engine)
    if locale:
        ranked = ranked.where(RankingObservation.locale == locale)
    ranked = ranked.subquery()
    return select(ranked).where(ranked.c.rn <= depth).subquery()


def _recency(row: Any) -> tuple[datetime, int]:
    return as_utc(row.observed_at), row.id


def current_rankings(
    session: Session,
    project_id: str,
    search_engine: str | None = None,
    locale: str | None = None,
) -> list[KeywordRanking]:
    """Latest position of every active keyword, compared within one engine and locale.

    When a keyword is tracked on several engines or locales, the series with
    the most recent observation wins.
    """
    keywords = list(
        session.execute(
            select(Keyword)
            .where(Keyword.project_id == project_id, Keyword.tracking_status == TrackingStatus.active)
            .order_by(Keyword.priority.asc(), Keyword.keyword.asc())
        ).scalars()
    )
    latest = _latest_observations(project_id, depth=2, search_engine=search_engine, locale=locale)
    series: dict[tuple[int, str, str], dict[int, Any]] = {}
    for row in session.execute(select(latest)):
        series.setdefault((row.keyword_id, row.search_engine, row.locale), {})[row.rn] = row

    newest: dict[int, dict[int, Any]] = {}
    for (keyword_id, _, _), rows in series.items():
        current = newest.get(keyword_id)
        if current is None or _recency(rows[1]) > _recency(current[1]):
            newest[keyword_id] = rows

    rankings: list[KeywordRanking] = []
    for keyword in keywords:
        rows = newest.get(keyword.id, {})
        head = rows.get(1)
        previous = rows.get(2)
        rankings.append(
            KeywordRanking(
                keyword_id=keyword.id,
                keyword=keyword.keyword,
                priority=keyword.priority,
                search_volume=keyword.search_volume,
                position=head.position if head else None,
                previous_position=previous.position if previous else None,
                ranking_url=head.ranking_url if head else None,
                observed_at=as_utc(head.observed_at) if head else None,
                search_engine=head.search_engine if head else None,
                locale=head.locale if head else None,
            )
        )
    return rankings


def striking_distance_keywords(
    session: Session, project_id: str, low: int = 11, high: int = 20
) -> list[StrikingDistanceKeyword]:
    """Active keywords whose latest position sits just off page one."""
    if low > high:
        low, high = high, low
    results = [
        StrikingDistanceKeyword(
            keyword_id=item.keyword_id,
            keyword=item.keyword,
            search_volume=item.search_volume,
            position=item.position,
            ranking_url=item.ranking_url,
            distance_to_page_one=round((PAGE_ONE_CUTOFF - item.position) / PAGE_ONE_CUTOFF * 100, 2),
        )
        for item in current_rankings(session, project_id)
        if item.position is not None and low <= item.position <= high
    ]
    results.sort(key=lambda item: (item.position, item.keyword))
    return results


def detect_cannibalization(
    session: Session, project_id: str, as_of: date, days: int = 28
) -> list[CannibalizationIssue]:
    lower, upper = day_bounds(as_of - timedelta(days=days), as_of)
    stmt = (
        select(Keyword.id, Keyword.keyword, RankingObservation.ranking_url)
        .join(RankingObservation, RankingObservation.keyword_id == Keyword.id)
        .where(
            Keyword.project_id == project_id,
            RankingObservation.ranking_url.is_not(None),
            RankingObservation.observed_at >= lower,
            RankingObservation.observed_at < upper,
        )
        .distinct()
    )
    urls: dict[tuple[int, str], set[str]] = {}
    for keyword_id, keyword, url in session.execute(stmt):
        urls.setdefault((keyword_id, keyword), set()).add(url)
    issues = [
        CannibalizationIssue(keyword_id, keyword, tuple(sorted(found)))
        for (keyword_id, keyword), found in urls.items()
        if len(found) > 1
    ]
    issues.sort(key=lambda issue: (-len(issue.urls), issue.keyword))
    return issues


def _week_summary(session: Session, project_id: str, start: date, tracked: int) -> WeekSummary:
    lower, upper = day_bounds(start, start + timedelta(days=6))
    stmt = (
        select(RankingObservation.keyword_id, func.avg(RankingObservation.position))
        .join(Keyword, Keyword.id == RankingObservation.keyword_id)
        .where(
            Keyword.project_id == project_id,
            Keyword.tracking_status == TrackingStatus.active,
            RankingObservation.observed_at >= lower,
            RankingObservation.observed_at < upper,
        )
        .group_by(RankingObservation.keyword_id)
    )
    averages = [float(avg) for _, avg in session.execute(stmt)]
    return WeekSummary(
        week_start=start,
        tracked_keywords=tracked,
        ranked_keywords=len(averages),
        avg_position=round(math.fsum(averages) / len(averages), 2) if averages else None,
        top10_count=sum(1 for value in averages if value <= 10),
    )


def dashboard_metrics(session: Session, project_id: str, as_of: date) -> DashboardMetrics:
    tracked = session.execute(
        select(func.count(Keyword.id)).where(
            Keyword.project_id == project_id, Keyword.tracking_status == TrackingStatus.active
        )
    ).scalar_one()
    this_week = week_start(as_of)
    return DashboardMetrics(
        current=_week_summary(session, project_id, this_week, tracked),
        previous=_week_summary(session, project_id, this_week - timedelta(days=7), tracked),
        cannibalization_issues=len(detect_cannibalization(session, project_id, as_of)),
    )


def group_performance(
    session: Session,
    project_id: str,
    keywords: Iterable[str],
    search_engine: str | None = None,
    locale: str | None = None,
) -> GroupPerformance:
    """Summarize a keyword group: average latest position and movement counts."""
    wanted = normalize_keywords(keywords)
    if not wanted:
        raise InvalidRange("keyword group must not be empty")
    members = [
        item
        for item in current_rankings(session, project_id, search_engine=search_engine, locale=locale)
        if item.keyword in wanted
    ]
    positions = [item.position for item in members if item.position is not None]
    changes = [item.position_change for item in members if item.position_change is not None]
    return GroupPerformance(
        keyword_count=len(members),
        ranked_keywords=len(positions),
        avg_position=round(math.fsum(positions) / len(positions), 2) if positions else None,
        improved=sum(1 for change in changes if change > 0),
        declined=sum(1 for change in changes if change < 0),
        stable=sum(1 for change in changes if change == 0),
    )
