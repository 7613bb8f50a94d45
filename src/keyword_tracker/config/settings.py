from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    cache_ttl_seconds: int = Field(default=3600, alias="CACHE_TTL_SECONDS", gt=0)
    cache_max_entries: int = Field(default=1024, alias="CACHE_MAX_ENTRIES", gt=0)

    window_freshness_seconds: int = Field(default=6 * 3600, alias="WINDOW_FRESHNESS_SECONDS", ge=0)
    window_retention_hours: int = Field(default=7 * 24, alias="WINDOW_RETENTION_HOURS", gt=0)
    window_refresh_minutes: int = Field(default=30, alias="WINDOW_REFRESH_MINUTES", gt=0)

    aggregation_precision: int = Field(default=4, alias="AGGREGATION_PRECISION", ge=0)
    page_size: int = Field(default=500, alias="PAGE_SIZE", gt=0)
    writer_threads: int = Field(default=2, alias="WRITER_THREADS", gt=0)

    scheduler_tz: str = Field(default="UTC", alias="SCHEDULER_TZ")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
