"""
Time and timestamp utilities.

Provides functions for run timestamps, durations and human-readable formatting.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def now_utc() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime in UTC
    """
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """
    Get current time as milliseconds since the epoch.

    Timeline events and run logs are stamped with this value.
    """
    return int(now_utc().timestamp() * 1000)


def duration_ms(start: Optional[datetime], end: Optional[datetime]) -> int:
    """
    Calculate milliseconds elapsed between two datetimes.

    Args:
        start: Start datetime
        end: End datetime

    Returns:
        Whole milliseconds, 0 if either side is missing or negative
    """
    if start is None or end is None:
        return 0
    diff = int((end - start).total_seconds() * 1000)
    return diff if diff >= 0 else 0


def format_timestamp(value: Union[datetime, int, None], format_str: str = None) -> Optional[str]:
    """
    Format a datetime or epoch-milliseconds value to string.

    Args:
        value: datetime object or epoch milliseconds
        format_str: Optional format string (defaults to ISO)

    Returns:
        Formatted string or None
    """
    if value is None:
        return None

    if isinstance(value, int):
        value = datetime.fromtimestamp(value / 1000, tz=timezone.utc)

    if format_str:
        return value.strftime(format_str)

    return value.isoformat()


def format_duration(seconds: Union[int, float, None]) -> str:
    """
    Format a duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Human-readable duration string
    """
    if seconds is None:
        return '-'

    if seconds < 0:
        return '-'

    if seconds < 1:
        return f'{int(seconds * 1000)}ms'

    if seconds < 60:
        return f'{seconds:.1f}s'

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f'{minutes}m {remaining_seconds}s'

    hours = minutes // 60
    remaining_minutes = minutes % 60

    return f'{hours}h {remaining_minutes}m'
