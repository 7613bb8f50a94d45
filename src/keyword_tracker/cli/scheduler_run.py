"""Run aggregation window maintenance in a dedicated process."""

from __future__ import annotations

from keyword_tracker.config.logging import configure_logging
from keyword_tracker.config.settings import get_settings
from keyword_tracker.worker.scheduler import run_forever


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    run_forever(settings)


if __name__ == "__main__":
    main()
