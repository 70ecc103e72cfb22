"""Duration parsing for interval and timeout settings."""

import re


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed."""

    pass


_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(duration_str: str) -> int:
    """Parse a duration string to whole seconds.

    Supports human-readable ("30s", "15m", "1h30m", "2d") and ISO-8601
    ("PT30S", "PT15M", "P2D") forms.

    Args:
        duration_str: Duration string to parse

    Returns:
        Duration in seconds

    Raises:
        DurationParseError: If the duration string is invalid or zero

    Examples:
        >>> parse_duration("90s")
        90
        >>> parse_duration("PT1M")
        60
    """
    if not isinstance(duration_str, str):
        raise DurationParseError(f"Duration must be a string, got: {duration_str!r}")

    duration_str = duration_str.strip()
    if not duration_str:
        raise DurationParseError("Duration string cannot be empty")

    if duration_str.upper().startswith("P"):
        total_seconds = _parse_iso8601_duration(duration_str)
    else:
        total_seconds = _parse_human_readable_duration(duration_str)

    if total_seconds == 0:
        raise DurationParseError(f"Duration cannot be zero: '{duration_str}'")

    return total_seconds


def _parse_iso8601_duration(duration_str: str) -> int:
    pattern = r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
    match = re.match(pattern, duration_str.upper())
    if not match:
        raise DurationParseError(
            f"Invalid ISO-8601 duration format: '{duration_str}'. "
            "Expected format like 'P2D', 'PT1H30M', 'PT15M', or 'PT30S'"
        )

    days, hours, minutes, seconds = match.groups()
    return (
        int(days or 0) * 86400
        + int(hours or 0) * 3600
        + int(minutes or 0) * 60
        + int(float(seconds or 0))
    )


def _parse_human_readable_duration(duration_str: str) -> int:
    matches = re.findall(r"(\d+)\s*([smhd])", duration_str.lower())
    if not matches:
        raise DurationParseError(
            f"Invalid duration format: '{duration_str}'. "
            "Expected format like '30s', '15m', '1h', '2d', or combinations like '1h30m'"
        )

    # Reject trailing garbage such as "15m!" or "10x"
    parsed = "".join(f"{num}{unit}" for num, unit in matches)
    if parsed != re.sub(r"\s+", "", duration_str.lower()):
        raise DurationParseError(
            f"Invalid characters in duration: '{duration_str}'. "
            "Use only digits and units: s (seconds), m (minutes), h (hours), d (days)"
        )

    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in matches)


def validate_duration_range(
    duration_seconds: int,
    min_seconds: int,
    max_seconds: int,
    label: str = "Interval",
) -> None:
    """Validate that a duration lies within [min_seconds, max_seconds].

    Raises:
        DurationParseError: If the duration is outside the range
    """
    if duration_seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {_seconds_to_human_readable(duration_seconds)}. "
            f"Minimum is {_seconds_to_human_readable(min_seconds)}."
        )

    if duration_seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {_seconds_to_human_readable(duration_seconds)}. "
            f"Maximum is {_seconds_to_human_readable(max_seconds)}."
        )


def _seconds_to_human_readable(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    if seconds < 3600:
        minutes = seconds // 60
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    if seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours != 1 else ''}"
    days = seconds // 86400
    return f"{days} day{'s' if days != 1 else ''}"
