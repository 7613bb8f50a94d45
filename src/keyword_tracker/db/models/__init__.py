from keyword_tracker.db.models.keyword import Keyword, TrackingStatus
from keyword_tracker.db.models.ranking_observation import RankingObservation
from keyword_tracker.db.models.aggregation_window import AggregationWindow, Granularity, Metric
from keyword_tracker.db.models.scheduler_status import SchedulerStatus

__all__ = [
    "Keyword",
    "TrackingStatus",
    "RankingObservation",
    "AggregationWindow",
    "Granularity",
    "Metric",
    "SchedulerStatus",
]
