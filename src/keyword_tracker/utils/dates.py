from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Half-open UTC interval covering the inclusive calendar range."""
    lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lower, upper


def week_start(value: date | datetime) -> date:
    if isinstance(value, datetime):
        value = as_utc(value).date()
    return value - timedelta(days=value.weekday())


def parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return as_utc(value).date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def parse_datetime(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))
