"""Run one rank aggregation and print JSON."""

from __future__ import annotations

import argparse
import json
import sys

from keyword_tracker.config.logging import configure_logging
from keyword_tracker.config.settings import get_settings
from keyword_tracker.db.models import Granularity, Metric
from keyword_tracker.db.session import create_db_engine, create_session_factory
from keyword_tracker.errors import KeywordQueryError
from keyword_tracker.services.aggregation import AggregationQuery
from keyword_tracker.services.aggregation_planner import AggregationPlanner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aggregate keyword rank positions")
    parser.add_argument("--project", required=True, help="Project/tenant identifier")
    parser.add_argument(
        "--keyword", action="append", default=[], help="Keyword to include (repeatable)"
    )
    parser.add_argument("--start", required=True, help="First day, YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="Last day, YYYY-MM-DD")
    parser.add_argument("--metric", default=Metric.avg.value, choices=[m.value for m in Metric])
    parser.add_argument(
        "--granularity",
        default=Granularity.daily.value,
        choices=[g.value for g in Granularity],
    )
    parser.add_argument("--refresh", action="store_true", help="Ignore cached results")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    session_factory = create_session_factory(create_db_engine(settings.database_url))

    try:
        query = AggregationQuery.build(
            args.project, args.keyword, args.start, args.end, args.metric, args.granularity
        )
        with AggregationPlanner.from_settings(session_factory, settings) as planner:
            result = planner.refresh(query) if args.refresh else planner.aggregate(query)
    except KeywordQueryError as exc:
        print(json.dumps({"error": type(exc).__name__, "message": str(exc)}), file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
