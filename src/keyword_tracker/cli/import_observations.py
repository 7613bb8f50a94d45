"""CLI for importing ranking observations from a YAML/JSON file."""

from __future__ import annotations

import argparse

from keyword_tracker.config.loaders import load_section
from keyword_tracker.config.logging import configure_logging
from keyword_tracker.config.settings import get_settings
from keyword_tracker.db.session import create_db_engine, create_session_factory
from keyword_tracker.services.aggregation_planner import AggregationPlanner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import keyword ranking observations")
    parser.add_argument("--config", required=True, help="Path to observations file (yaml/json)")
    parser.add_argument("--project", required=True, help="Project/tenant identifier")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)

    rows = load_section(args.config, "observations")
    if not rows:
        print("No observations found in config")
        return

    session_factory = create_session_factory(create_db_engine(settings.database_url))
    with AggregationPlanner.from_settings(session_factory, settings) as planner:
        result = planner.ingest(args.project, rows)

    print(
        f"Imported {result.inserted} observations "
        f"({result.skipped} skipped, {result.keywords_created} new keywords)"
    )


if __name__ == "__main__":
    main()
