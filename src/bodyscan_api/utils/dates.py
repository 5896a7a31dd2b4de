"""Date and time utility functions."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

UTC_TZ = timezone.utc

# Scan dates are stored as ISO calendar days so they sort lexicographically
DAY_FORMAT = "%Y-%m-%d"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC_TZ)


def local_today(tz_name: str) -> date:
    """
    Get today's calendar date in the user's timezone.

    Args:
        tz_name: IANA timezone name (e.g. "America/Chicago")

    Returns:
        The local calendar date
    """
    return datetime.now(ZoneInfo(tz_name)).date()


def parse_day(value: str | date) -> date:
    """
    Parse a YYYY-MM-DD string into a date.

    Raises:
        ValueError: If the string is not a valid calendar day
    """
    if isinstance(value, date):
        return value
    return datetime.strptime(value, DAY_FORMAT).date()


def format_day(value: date) -> str:
    """Format a date as YYYY-MM-DD."""
    return value.strftime(DAY_FORMAT)


def day_range(end: date, days: int) -> list[date]:
    """
    Build a list of consecutive calendar days ending at `end`.

    Args:
        end: Last day of the range (inclusive)
        days: Number of days

    Returns:
        Days in ascending order, most recent last
    """
    start = end - timedelta(days=days - 1)
    return [start + timedelta(days=i) for i in range(days)]


def days_between(earlier: str | date, later: str | date) -> int:
    """Number of calendar days from `earlier` to `later`."""
    return (parse_day(later) - parse_day(earlier)).days
