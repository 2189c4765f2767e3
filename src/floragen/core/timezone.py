"""UTC time helpers.

All timestamps are stored as timezone-aware UTC values.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def month_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Return the [start, end) bounds of the calendar month containing ``moment``.

    Usage periods are calendar months in UTC.
    """
    moment = moment.astimezone(UTC)
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end
