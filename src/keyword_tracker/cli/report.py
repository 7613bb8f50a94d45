"""Print ranking reports for a project as JSON."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from datetime import date

from keyword_tracker.config.settings import get_settings
from keyword_tracker.db.session import create_db_engine, create_session_factory
from keyword_tracker.queries.rankings import (
    current_rankings,
    dashboard_metrics,
    detect_cannibalization,
    group_performance,
    striking_distance_keywords,
)
from keyword_tracker.utils.dates import parse_date

REPORTS = ("rankings", "striking-distance", "cannibalization", "dashboard", "group")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keyword ranking reports")
    parser.add_argument("report", choices=REPORTS)
    parser.add_argument("--project", required=True, help="Project/tenant identifier")
    parser.add_argument("--as-of", default=None, help="Reference day, YYYY-MM-DD (default today)")
    parser.add_argument(
        "--keyword", action="append", default=[], help="Group member for the group report (repeatable)"
    )
    return parser


def run_report(session, name: str, project_id: str, as_of: date, keywords: list[str] | None = None):
    if name == "rankings":
        return [
            {**asdict(item), "position_change": item.position_change}
            for item in current_rankings(session, project_id)
        ]
    if name == "striking-distance":
        return [asdict(item) for item in striking_distance_keywords(session, project_id)]
    if name == "cannibalization":
        return [
            {**asdict(item), "severity": item.severity}
            for item in detect_cannibalization(session, project_id, as_of)
        ]
    if name == "group":
        return asdict(group_performance(session, project_id, keywords or []))
    return asdict(dashboard_metrics(session, project_id, as_of))


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = get_settings()
    session_factory = create_session_factory(create_db_engine(settings.database_url))
    as_of = parse_date(args.as_of) if args.as_of else date.today()

    with session_factory() as session:
        payload = run_report(session, args.report, args.project, as_of, args.keyword)
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


if __name__ == "__main__":
    main()
