"""Timestamp utilities for UTC handling and datetime parsing.

This module provides utilities for working with timestamps in UTC:
- Getting current UTC time
- Parsing ISO 8601 datetime strings
- Converting timezone-naive to timezone-aware UTC
- Formatting timestamps for storage and logs
- Measuring elapsed days for recency scoring
"""

from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 86400


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info

    Example:
        >>> now = utc_now()
        >>> now.tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    If the datetime is timezone-naive, it's treated as UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None

    Example:
        >>> naive = datetime(2025, 11, 4, 12, 0, 0)
        >>> ensure_utc(naive).tzinfo == timezone.utc
        True
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def parse_iso_datetime(iso_string: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 datetime string to UTC datetime.

    Supports:
    - 2025-11-04T12:00:00Z
    - 2025-11-04T12:00:00.123456Z
    - 2025-11-04T12:00:00+00:00
    - 2025-11-04

    Args:
        iso_string: ISO 8601 formatted datetime string

    Returns:
        Timezone-aware datetime in UTC, or None if empty or unparseable
    """
    if not iso_string or not iso_string.strip():
        return None

    cleaned = iso_string.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"

    try:
        return ensure_utc(datetime.fromisoformat(cleaned))
    except ValueError:
        try:
            return ensure_utc(datetime.strptime(iso_string.strip(), "%Y-%m-%d"))
        except ValueError:
            return None


def format_timestamp(dt: Optional[datetime], include_microseconds: bool = True) -> Optional[str]:
    """Format a datetime as an ISO 8601 UTC string with 'Z' suffix.

    The microsecond format is the storage format: fixed width, so stored
    values sort lexicographically in chronological order.

    Args:
        dt: Datetime to format (None passes through)
        include_microseconds: Whether to include microseconds

    Returns:
        ISO 8601 formatted string or None

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc), False)
        '2025-11-04T12:00:00Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return None

    if include_microseconds:
        return dt_utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def days_between(earlier: Optional[datetime], later: datetime) -> float:
    """Return the fractional number of days from ``earlier`` to ``later``.

    A missing ``earlier`` timestamp counts as zero days. Negative spans (a
    publish time in the future) are clamped to zero.

    Args:
        earlier: Start of the span (e.g. a listing's publish time)
        later: End of the span (usually "now", passed explicitly)

    Returns:
        Non-negative number of days
    """
    if earlier is None:
        return 0.0
    delta = ensure_utc(later) - ensure_utc(earlier)
    return max(delta.total_seconds() / SECONDS_PER_DAY, 0.0)
