"""CLI for CSV export."""

from __future__ import annotations

import argparse
import csv

from keyword_tracker.config.settings import get_settings
from keyword_tracker.db.session import create_db_engine, create_session_factory
from keyword_tracker.queries.observations import ObservationAccessor
from keyword_tracker.utils.dates import parse_date


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export ranking observations to CSV")
    parser.add_argument("--out", required=True, help="Output CSV path")
    parser.add_argument("--project", required=True, help="Project/tenant identifier")
    parser.add_argument("--keyword", action="append", required=True, help="Keyword (repeatable)")
    parser.add_argument("--start", required=True, help="First day, YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="Last day, YYYY-MM-DD")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = get_settings()
    session_factory = create_session_factory(create_db_engine(settings.database_url))
    accessor = ObservationAccessor(page_size=settings.page_size)

    count = 0
    with session_factory() as session, open(args.out, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow([
            "observation_id",
            "keyword",
            "search_engine",
            "locale",
            "position",
            "ranking_url",
            "observed_at",
        ])
        for row in accessor.iter_observations(
            session, args.project, args.keyword, parse_date(args.start), parse_date(args.end)
        ):
            writer.writerow([
                row.id,
                row.keyword,
                row.search_engine,
                row.locale,
                row.position,
                row.ranking_url or "",
                row.observed_at.isoformat(),
            ])
            count += 1

    print(f"Exported {count} rows to {args.out}")


if __name__ == "__main__":
    main()
