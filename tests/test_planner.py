"""Tests for the aggregation planner."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from keyword_tracker.cache.result_cache import ResultCache
from keyword_tracker.db.models import AggregationWindow
from keyword_tracker.errors import ComputationFailure, InvalidRange, NotFound
from keyword_tracker.queries.observations import ObservationAccessor
from keyword_tracker.services.aggregation import AggregationQuery
from keyword_tracker.services.aggregation_planner import AggregationPlanner
from tests.conftest import PROJECT, daily_rows

NOW = datetime(2024, 2, 1, 12, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingAccessor(ObservationAccessor):
    """Real accessor that records how often observations were read."""

    def __init__(self, delay: float = 0.0) -> None:
        super().__init__()
        self.calls = 0
        self.delay = delay
        self._lock = threading.Lock()

    def iter_observations(self, *args, **kwargs):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        return super().iter_observations(*args, **kwargs)


def _query(**overrides) -> AggregationQuery:
    params = {"start": "2024-01-01", "end": "2024-01-07", "metric": "avg", "granularity": "daily"}
    params.update(overrides)
    return AggregationQuery.build(PROJECT, ["shoes"], **params)


def _window_count(session_factory) -> int:
    with session_factory() as session:
        return session.execute(select(func.count(AggregationWindow.id))).scalar_one()


@pytest.fixture
def planner_factory(session_factory):
    planners = []

    def _make(**kwargs):
        kwargs.setdefault("now", lambda: NOW)
        kwargs.setdefault("writer", ThreadPoolExecutor(max_workers=1))
        planner = AggregationPlanner(session_factory, **kwargs)
        planners.append((planner, kwargs["writer"]))
        return planner

    yield _make
    for planner, writer in planners:
        planner.close()
        if writer is not None:
            writer.shutdown(wait=True)


class TestAggregate:
    def test_shoes_average(self, planner_factory, shoes_week):
        planner = planner_factory()
        result = planner.aggregate(_query())
        assert result.value == 3.2857
        assert result.sample_count == 7
        assert result.source == "computed"

    def test_weekly_granularity(self, planner_factory, shoes_week):
        result = planner_factory().aggregate(_query(granularity="weekly"))
        assert len(result.buckets) == 1
        assert result.buckets[0].value == 3.2857

    def test_second_call_served_from_cache(self, planner_factory, shoes_week):
        accessor = CountingAccessor()
        planner = planner_factory(accessor=accessor)
        first = planner.aggregate(_query())
        second = planner.aggregate(_query())
        assert accessor.calls == 1
        assert second.source == "cache"
        assert second == first

    def test_unknown_keyword_raises_not_found(self, planner_factory, shoes_week):
        planner = planner_factory()
        with pytest.raises(NotFound):
            planner.aggregate(AggregationQuery.build(PROJECT, ["boots"], "2024-01-01", "2024-01-07"))

    def test_empty_keyword_set_never_reaches_store(self, planner_factory):
        planner = planner_factory()
        with patch("keyword_tracker.services.aggregation_planner.load_window") as load, patch.object(
            ObservationAccessor, "iter_observations"
        ) as read:
            with pytest.raises(InvalidRange):
                planner.aggregate(AggregationQuery(PROJECT, frozenset(), date(2024, 1, 1), date(2024, 1, 7)))
        load.assert_not_called()
        read.assert_not_called()

    def test_store_failure_is_retryable(self, planner_factory, shoes_week):
        planner = planner_factory(persist_windows=False, writer=None)
        with patch.object(ObservationAccessor, "iter_observations", side_effect=ComputationFailure("down")):
            with pytest.raises(ComputationFailure) as excinfo:
                planner.aggregate(_query())
        assert excinfo.value.retryable

    def test_expired_cache_entry_triggers_recompute(self, planner_factory, shoes_week):
        clock = FakeClock()
        accessor = CountingAccessor()
        planner = planner_factory(
            accessor=accessor,
            cache=ResultCache(ttl=60, max_entries=16, clock=clock),
            persist_windows=False,
            writer=None,
        )
        planner.aggregate(_query())
        clock.now += 30
        assert planner.aggregate(_query()).source == "cache"
        clock.now += 31
        result = planner.aggregate(_query())
        assert result.source == "computed"
        assert accessor.calls == 2

    def test_refresh_bypasses_cache(self, planner_factory, shoes_week):
        accessor = CountingAccessor()
        planner = planner_factory(accessor=accessor)
        first = planner.aggregate(_query())
        planner.drain()
        again = planner.refresh(_query())
        assert accessor.calls == 2
        assert again.value == first.value
        assert again.buckets == first.buckets


class TestSingleFlight:
    def test_concurrent_identical_requests_compute_once(self, planner_factory, shoes_week):
        accessor = CountingAccessor(delay=0.2)
        planner = planner_factory(accessor=accessor, persist_windows=False, writer=None)
        barrier = threading.Barrier(8)

        def call():
            barrier.wait()
            return planner.aggregate(_query())

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: call(), range(8)))

        assert accessor.calls == 1
        assert {result.value for result in results} == {3.2857}

    def test_waiters_receive_the_same_error(self, planner_factory, shoes_week):
        planner = planner_factory(persist_windows=False, writer=None)
        calls = []

        def failing(*args, **kwargs):
            calls.append(1)
            time.sleep(0.2)
            raise ComputationFailure("timeout")

        barrier = threading.Barrier(6)

        def call():
            barrier.wait()
            try:
                planner.aggregate(_query())
            except ComputationFailure as exc:
                return exc
            return None

        with patch.object(ObservationAccessor, "iter_observations", side_effect=failing):
            with ThreadPoolExecutor(max_workers=6) as pool:
                errors = list(pool.map(lambda _: call(), range(6)))

        assert len(calls) == 1
        assert all(isinstance(error, ComputationFailure) for error in errors)
        assert len({id(error) for error in errors}) == 1


class TestPersistedWindows:
    def test_computed_result_is_persisted(self, planner_factory, session_factory, shoes_week):
        planner = planner_factory()
        planner.aggregate(_query())
        planner.drain()
        assert _window_count(session_factory) == 1

    def test_fresh_window_served_without_recompute(self, planner_factory, shoes_week):
        first = planner_factory()
        first.aggregate(_query())
        first.drain()
        accessor = CountingAccessor()
        later = planner_factory(accessor=accessor, now=lambda: NOW + timedelta(hours=1))
        result = later.aggregate(_query())
        assert result.source == "window"
        assert result.value == 3.2857
        assert accessor.calls == 0

    def test_cached_window_expires_with_its_freshness(self, planner_factory, shoes_week):
        """A window promoted into the cache keeps its original age."""
        first = planner_factory()
        first.aggregate(_query())
        first.drain()

        clock = FakeClock()
        current = {"now": NOW + timedelta(hours=5, minutes=59)}
        accessor = CountingAccessor()
        later = planner_factory(
            accessor=accessor,
            cache=ResultCache(ttl=3600, max_entries=16, clock=clock),
            freshness=timedelta(hours=6),
            now=lambda: current["now"],
        )
        assert later.aggregate(_query()).source == "window"
        later.drain()

        clock.now += 30 * 60
        current["now"] += timedelta(minutes=30)
        result = later.aggregate(_query())
        assert result.source == "computed"
        assert result.computed_at == current["now"]
        assert accessor.calls == 1

    def test_stale_window_is_recomputed(self, planner_factory, shoes_week):
        first = planner_factory()
        first.aggregate(_query())
        first.drain()
        accessor = CountingAccessor()
        later = planner_factory(
            accessor=accessor,
            freshness=timedelta(hours=6),
            now=lambda: NOW + timedelta(hours=7),
        )
        result = later.aggregate(_query())
        assert result.source == "computed"
        assert accessor.calls == 1

    def test_write_failure_does_not_fail_read(self, planner_factory, session_factory, shoes_week, caplog):
        planner = planner_factory()
        with patch(
            "keyword_tracker.services.aggregation_planner.save_window",
            side_effect=RuntimeError("disk full"),
        ):
            result = planner.aggregate(_query())
            planner.drain()
        assert result.value == 3.2857
        assert _window_count(session_factory) == 0
        assert "could not persist window" in caplog.text

    def test_slow_write_does_not_block_read(self, planner_factory, shoes_week):
        release = threading.Event()

        def slow_save(*args, **kwargs):
            release.wait(timeout=5)

        planner = planner_factory()
        with patch("keyword_tracker.services.aggregation_planner.save_window", side_effect=slow_save):
            started = time.monotonic()
            result = planner.aggregate(_query())
            elapsed = time.monotonic() - started
            release.set()
            planner.drain()
        assert result.value == 3.2857
        assert elapsed < 2


class TestIngest:
    def test_ingest_invalidates_cache_and_windows(self, planner_factory, session_factory, shoes_week):
        planner = planner_factory()
        before = planner.aggregate(_query(end="2024-01-08"))
        planner.drain()
        assert _window_count(session_factory) == 1

        result = planner.ingest(PROJECT, daily_rows("shoes", date(2024, 1, 8), [1]))
        assert result.inserted == 1
        assert _window_count(session_factory) == 0
        assert len(planner.cache) == 0

        after = planner.aggregate(_query(end="2024-01-08"))
        assert after.source == "computed"
        assert after.sample_count == before.sample_count + 1
        assert after.value == 3.0

    def test_duplicate_ingest_keeps_cache(self, planner_factory, shoes_week):
        planner = planner_factory()
        planner.aggregate(_query())
        planner.drain()
        result = planner.ingest(PROJECT, daily_rows("shoes", date(2024, 1, 1), [5]))
        assert result.inserted == 0
        assert planner.aggregate(_query()).source == "cache"
