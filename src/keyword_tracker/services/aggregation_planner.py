"""Serve rank aggregations from cache, persisted windows, or raw observations.

Lookup order for a query:

1. the in-process result cache,
2. a persisted aggregation window younger than ``freshness``,
3. a fresh computation over the matching observations.

Concurrent identical lookups share one execution. Computed results are
written back on a background executor; a failed write is logged and never
reaches the reader.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from keyword_tracker.cache.result_cache import ResultCache
from keyword_tracker.cache.single_flight import SingleFlight
from keyword_tracker.config.settings import Settings
from keyword_tracker.errors import CacheWriteFailure, ComputationFailure
from keyword_tracker.queries.observations import IngestResult, ObservationAccessor
from keyword_tracker.services.aggregation import (
    AggregationKey,
    AggregationQuery,
    AggregationResult,
    compute_aggregation,
)
from keyword_tracker.services.window_store import (
    invalidate_windows,
    load_window,
    mark_window_read,
    save_window,
)
from keyword_tracker.utils.dates import utcnow

logger = logging.getLogger(__name__)


class AggregationPlanner:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        accessor: ObservationAccessor | None = None,
        cache: ResultCache[AggregationKey, AggregationResult] | None = None,
        freshness: timedelta = timedelta(hours=6),
        precision: int = 4,
        persist_windows: bool = True,
        writer: Executor | None = None,
        writer_threads: int = 2,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._accessor = accessor if accessor is not None else ObservationAccessor()
        self._cache = cache if cache is not None else ResultCache(ttl=3600, max_entries=1024)
        self._freshness = freshness
        self._precision = precision
        self._persist_windows = persist_windows
        self._owns_writer = writer is None and persist_windows
        if self._owns_writer:
            writer = ThreadPoolExecutor(max_workers=writer_threads, thread_name_prefix="window-writer")
        self._writer = writer
        self._now = now
        self._flight: SingleFlight[Any, AggregationResult] = SingleFlight()
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    @classmethod
    def from_settings(cls, session_factory: sessionmaker[Session], settings: Settings) -> "AggregationPlanner":
        return cls(
            session_factory,
            accessor=ObservationAccessor(page_size=settings.page_size),
            cache=ResultCache(ttl=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries),
            freshness=timedelta(seconds=settings.window_freshness_seconds),
            precision=settings.aggregation_precision,
            writer_threads=settings.writer_threads,
        )

    def __enter__(self) -> "AggregationPlanner":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def cache(self) -> ResultCache[AggregationKey, AggregationResult]:
        return self._cache

    def aggregate(self, query: AggregationQuery) -> AggregationResult:
        key = query.key
        cached = self._cache.get(key)
        if cached is not None:
            return replace(cached, source="cache")
        return self._flight.do(key, lambda: self._resolve(query))

    def refresh(self, query: AggregationQuery) -> AggregationResult:
        """Recompute from observations, ignoring cached and persisted results."""
        key = query.key

        def run() -> AggregationResult:
            result = self._compute(query)
            self._store(query, result, served=False)
            return result

        return self._flight.do(("refresh", key), run)

    def invalidate(self, project_id: str) -> int:
        dropped = self._cache.invalidate(lambda key: key.project_id == project_id)
        if dropped:
            logger.debug("Dropped %d cached aggregations for project %s", dropped, project_id)
        return dropped

    def ingest(self, project_id: str, rows: Iterable[Mapping[str, Any]]) -> IngestResult:
        """Record observations and discard every derived result they affect."""
        with self._session_factory() as session:
            result = self._accessor.record_observations(session, project_id, rows)
            if result.inserted and result.first_observed and result.last_observed:
                invalidate_windows(
                    session,
                    project_id,
                    result.first_observed.date(),
                    result.last_observed.date(),
                )
        if result.inserted:
            self.invalidate(project_id)
        return result

    def drain(self, timeout: float | None = None) -> None:
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self.drain()
        if self._owns_writer and self._writer is not None:
            self._writer.shutdown(wait=True)

    def _resolve(self, query: AggregationQuery) -> AggregationResult:
        key = query.key
        cached = self._cache.get(key)
        if cached is not None:
            return replace(cached, source="cache")
        if self._persist_windows:
            window = self._load_fresh_window(key)
            if window is not None:
                self._cache_result(window)
                self._submit(self._mark_served, key)
                return window
        result = self._compute(query)
        self._store(query, result)
        return result

    def _load_fresh_window(self, key: AggregationKey) -> AggregationResult | None:
        try:
            with self._session_factory() as session:
                window = load_window(session, key)
        except SQLAlchemyError as exc:
            logger.warning("Could not read aggregation window %s: %s", key.digest, exc)
            return None
        if window is None:
            return None
        age = self._now() - window.computed_at
        if age >= self._freshness:
            logger.debug("Aggregation window %s is stale (age %s)", key.digest, age)
            return None
        return window

    def _compute(self, query: AggregationQuery) -> AggregationResult:
        with self._session_factory() as session:
            rows = self._accessor.iter_observations(
                session, query.project_id, query.keywords, query.start, query.end
            )
            try:
                return compute_aggregation(
                    rows, query.key, precision=self._precision, computed_at=self._now()
                )
            except SQLAlchemyError as exc:
                raise ComputationFailure(f"aggregation failed: {exc}") from exc

    def _cache_result(self, result: AggregationResult) -> None:
        # A cached result must not outlive the freshness of the data it came from.
        remaining = self._freshness - (self._now() - result.computed_at)
        self._cache.put(result.key, result, ttl=remaining.total_seconds())

    def _store(self, query: AggregationQuery, result: AggregationResult, served: bool = True) -> None:
        self._cache_result(result)
        self._submit(self._write_window, query, result, served)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> None:
        if not self._persist_windows or self._writer is None:
            return
        try:
            future = self._writer.submit(fn, *args)
        except RuntimeError as exc:
            logger.warning("Window writer unavailable, skipping persistence: %s", exc)
            return
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _write_window(
        self, query: AggregationQuery, result: AggregationResult, served: bool
    ) -> CacheWriteFailure | None:
        try:
            with self._session_factory() as session:
                save_window(session, query, result, read_at=result.computed_at if served else None)
        except Exception as exc:  # noqa: BLE001
            failure = CacheWriteFailure(f"could not persist window {result.key.digest}: {exc}")
            logger.warning("%s", failure)
            return failure
        return None

    def _mark_served(self, key: AggregationKey) -> None:
        try:
            with self._session_factory() as session:
                mark_window_read(session, key, self._now())
        except SQLAlchemyError as exc:
            logger.warning("Could not record read of window %s: %s", key.digest, exc)
