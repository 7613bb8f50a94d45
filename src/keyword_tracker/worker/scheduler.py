from __future__ import annotations

import atexit
import logging
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.schedulers.base import BaseScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from keyword_tracker.config.settings import Settings, get_settings
from keyword_tracker.db.models import SchedulerStatus
from keyword_tracker.db.session import create_db_engine, create_session_factory
from keyword_tracker.errors import KeywordQueryError
from keyword_tracker.services.aggregation_planner import AggregationPlanner
from keyword_tracker.services.window_store import purge_expired_windows, stale_windows
from keyword_tracker.utils.dates import utcnow

logger = logging.getLogger(__name__)

STATUS_NAME = "window-maintenance"


class WindowMaintenance:
    """Jobs that keep persisted aggregation windows bounded and fresh."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        planner: AggregationPlanner,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._planner = planner
        self._settings = settings

    def _now(self) -> datetime:
        return datetime.now(ZoneInfo(self._settings.scheduler_tz))

    def heartbeat(self, job: str, running: bool = True) -> None:
        with self._session_factory() as session:
            status = session.get(SchedulerStatus, STATUS_NAME)
            if not status:
                status = SchedulerStatus(name=STATUS_NAME)
            status.running = running
            status.last_heartbeat = self._now()
            status.last_job = job
            session.add(status)
            session.commit()

    def purge_expired(self) -> int:
        self.heartbeat("purge_expired")
        cutoff = utcnow() - timedelta(hours=self._settings.window_retention_hours)
        with self._session_factory() as session:
            return purge_expired_windows(session, cutoff)

    def refresh_stale(self, limit: int = 100) -> int:
        self.heartbeat("refresh_stale")
        now = utcnow()
        cutoff = now - timedelta(seconds=self._settings.window_freshness_seconds)
        read_since = now - timedelta(hours=self._settings.window_retention_hours)
        with self._session_factory() as session:
            queries = stale_windows(session, cutoff, read_since=read_since, limit=limit)

        refreshed = 0
        for query in queries:
            try:
                self._planner.refresh(query)
            except KeywordQueryError as exc:
                logger.warning("Skipping window refresh for project %s: %s", query.project_id, exc)
                continue
            refreshed += 1
        self._planner.drain()
        if refreshed:
            logger.info("Refreshed %d stale aggregation windows", refreshed)
        return refreshed

    def mark_stopped(self) -> None:
        try:
            self.heartbeat("shutdown", running=False)
        except SQLAlchemyError as exc:
            logger.warning("Could not record scheduler shutdown: %s", exc)

    def register(self, scheduler: BaseScheduler) -> None:
        scheduler.add_job(
            self.refresh_stale,
            "interval",
            minutes=self._settings.window_refresh_minutes,
            id="window_refresh",
            coalesce=True,
            misfire_grace_time=90,
            max_instances=1,
        )
        scheduler.add_job(
            self.purge_expired,
            "interval",
            hours=1,
            id="window_purge",
            coalesce=True,
            misfire_grace_time=300,
            max_instances=1,
        )


def _build(settings: Settings) -> WindowMaintenance:
    session_factory = create_session_factory(create_db_engine(settings.database_url))
    planner = AggregationPlanner.from_settings(session_factory, settings)
    return WindowMaintenance(session_factory, planner, settings)


def run_forever(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    maintenance = _build(settings)
    atexit.register(maintenance.mark_stopped)
    scheduler = BlockingScheduler(timezone=settings.scheduler_tz)
    maintenance.register(scheduler)
    logger.info("Window maintenance scheduler started (tz=%s)", settings.scheduler_tz)
    scheduler.start()
