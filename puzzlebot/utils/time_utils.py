from datetime import datetime, timezone

import pytz


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns round-trip through SQLite"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(timestamp: datetime, timezone_name: str = 'UTC') -> datetime:
    """
    Convert a naive UTC timestamp into the given timezone.

    Args:
        timestamp: Naive datetime assumed to be UTC (aware datetimes are converted as-is)
        timezone_name: pytz zone name, e.g. 'America/New_York'

    Returns:
        Timezone-aware datetime in the requested zone
    """
    if timestamp.tzinfo is None:
        timestamp = pytz.utc.localize(timestamp)
    return timestamp.astimezone(pytz.timezone(timezone_name))


def minutes_between(start: datetime, end: datetime) -> float:
    """Minutes elapsed from start to end (negative if end precedes start)"""
    return (end - start).total_seconds() / 60
