from __future__ import annotations

import hashlib
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from keyword_tracker.db.models import Granularity, Metric
from keyword_tracker.errors import InvalidRange
from keyword_tracker.queries.observations import ObservationRow, validate_request
from keyword_tracker.utils.dates import as_utc, parse_date, week_start
from keyword_tracker.utils.keywords import keyword_set_hash


@dataclass(frozen=True)
class AggregationKey:
    project_id: str
    keyword_set_hash: str
    start: date
    end: date
    metric: Metric
    granularity: Granularity

    @property
    def digest(self) -> str:
        raw = "|".join(
            [
                self.project_id,
                self.keyword_set_hash,
                self.start.isoformat(),
                self.end.isoformat(),
                self.metric.value,
                self.granularity.value,
            ]
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AggregationQuery:
    project_id: str
    keywords: frozenset[str]
    start: date
    end: date
    metric: Metric = Metric.avg
    granularity: Granularity = Granularity.daily

    def __post_init__(self) -> None:
        if not isinstance(self.metric, Metric):
            raise InvalidRange(f"unknown metric {self.metric!r}")
        if not isinstance(self.granularity, Granularity):
            raise InvalidRange(f"unknown granularity {self.granularity!r}")
        if not isinstance(self.start, date) or not isinstance(self.end, date):
            raise InvalidRange("start and end must be dates")
        object.__setattr__(self, "keywords", validate_request(self.keywords, self.start, self.end))

    @classmethod
    def build(
        cls,
        project_id: str,
        keywords: Iterable[str],
        start: str | date,
        end: str | date,
        metric: str | Metric = Metric.avg,
        granularity: str | Granularity = Granularity.daily,
    ) -> "AggregationQuery":
        try:
            start_date = parse_date(start)
            end_date = parse_date(end)
        except ValueError as exc:
            raise InvalidRange(f"malformed date: {exc}") from exc
        try:
            metric = Metric(str.lower(metric))
        except (TypeError, ValueError) as exc:
            raise InvalidRange(f"unknown metric {metric!r}") from exc
        try:
            granularity = Granularity(str.lower(granularity))
        except (TypeError, ValueError) as exc:
            raise InvalidRange(f"unknown granularity {granularity!r}") from exc
        return cls(project_id, frozenset(keywords), start_date, end_date, metric, granularity)

    @property
    def key(self) -> AggregationKey:
        return AggregationKey(
            project_id=self.project_id,
            keyword_set_hash=keyword_set_hash(self.keywords),
            start=self.start,
            end=self.end,
            metric=self.metric,
            granularity=self.granularity,
        )


@dataclass(frozen=True)
class Bucket:
    start: date
    value: float
    samples: int

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.isoformat(), "value": self.value, "samples": self.samples}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bucket":
        return cls(date.fromisoformat(data["start"]), float(data["value"]), int(data["samples"]))


@dataclass(frozen=True)
class AggregationResult:
    key: AggregationKey
    value: float | None
    sample_count: int
    buckets: tuple[Bucket, ...]
    computed_at: datetime
    source: str = field(default="computed", compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.key.project_id,
            "keyword_set_hash": self.key.keyword_set_hash,
            "start": self.key.start.isoformat(),
            "end": self.key.end.isoformat(),
            "metric": self.key.metric.value,
            "granularity": self.key.granularity.value,
            "value": self.value,
            "sample_count": self.sample_count,
            "buckets": [bucket.to_dict() for bucket in self.buckets],
            "computed_at": as_utc(self.computed_at).isoformat(),
            "source": self.source,
        }


def bucket_start(observed_at: datetime, granularity: Granularity) -> date:
    day = as_utc(observed_at).date()
    if granularity is Granularity.weekly:
        return week_start(day)
    return day


def apply_metric(positions: list[int], metric: Metric, precision: int) -> float:
    if metric is Metric.min:
        value = float(min(positions))
    elif metric is Metric.max:
        value = float(max(positions))
    else:
        value = math.fsum(positions) / len(positions)
    return round(value, precision)


def compute_aggregation(
    rows: Iterable[ObservationRow],
    key: AggregationKey,
    *,
    precision: int,
    computed_at: datetime,
) -> AggregationResult:
    """Aggregate rank positions over the window described by ``key``.

    The overall value covers every observation, not the bucket values.
    """
    grouped: dict[date, list[int]] = {}
    positions: list[int] = []
    for row in rows:
        grouped.setdefault(bucket_start(row.observed_at, key.granularity), []).append(row.position)
        positions.append(row.position)

    if not positions:
        return AggregationResult(key, None, 0, (), computed_at)

    buckets = tuple(
        Bucket(start, apply_metric(values, key.metric, precision), len(values))
        for start, values in sorted(grouped.items())
    )
    return AggregationResult(
        key=key,
        value=apply_metric(positions, key.metric, precision),
        sample_count=len(positions),
        buckets=buckets,
        computed_at=computed_at,
    )
