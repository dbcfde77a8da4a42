"""Date and timestamp helpers shared by the syncers and the aggregation pipeline."""

from datetime import UTC, date, datetime, time, timedelta


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Return a timezone-aware UTC datetime.

    SQLite drops tzinfo on the way back from the database, so naive values are
    assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_unix(value: datetime) -> int:
    """Convert a datetime to whole Unix seconds."""
    return int(as_utc(value).timestamp())


def from_unix(timestamp: int | float) -> datetime:
    """Convert Unix seconds to a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, tz=UTC)


def parse_datetime(value: str | None) -> datetime | None:
    """Parse a Zendesk ISO 8601 timestamp (``2024-01-18T10:30:00Z``)."""
    if not value:
        return None
    for fmt in [
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f%z",
    ]:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return as_utc(parsed)
    return None


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC interval [day 00:00, next day 00:00)."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def week_start_of(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def month_start_of(day: date) -> date:
    return day.replace(day=1)


def next_month(month_start: date) -> date:
    if month_start.month == 12:
        return date(month_start.year + 1, 1, 1)
    return date(month_start.year, month_start.month + 1, 1)


def previous_day(today: date) -> date:
    return today - timedelta(days=1)


def previous_week_start(today: date) -> date:
    """Monday of the last fully completed week."""
    return week_start_of(today) - timedelta(days=7)


def previous_month_start(today: date) -> date:
    first = month_start_of(today)
    return month_start_of(first - timedelta(days=1))


def iter_days(start: date, end: date):
    """Yield each day of the inclusive range [start, end]."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
