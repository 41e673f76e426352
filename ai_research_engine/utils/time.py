"""
UTC timestamp utilities for the AI Research Engine.

All timestamps MUST be in UTC with explicit timezone markers.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- parse_timestamp(): Parse ISO 8601 string to datetime
- elapsed_ms(): Milliseconds between two timestamps

Examples:
    >>> from ai_research_engine.utils.time import utc_now, utc_timestamp
    >>> utc_timestamp()
    '2026-03-02T08:30:45Z'
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Note:
        NEVER use datetime.now() without timezone parameter.
        NEVER use datetime.utcnow() (deprecated, returns naive datetime).
    """
    return datetime.now(UTC)


def utc_timestamp(dt: datetime | None = None) -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ

    Args:
        dt: Optional timezone-aware datetime. Defaults to utc_now().

    Returns:
        str: ISO 8601 formatted timestamp in UTC

    Raises:
        ValueError: If dt is naive (no timezone info)
    """
    if dt is None:
        dt = utc_now()
    elif dt.tzinfo is None:
        raise ValueError("Datetime must have timezone info")

    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse ISO 8601 timestamp string to a UTC datetime.

    Accepts both 'Z' suffix and explicit offsets. Strings without timezone
    information are rejected.

    Args:
        timestamp_str: ISO 8601 timestamp string

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If the string is malformed or has no timezone info

    Example:
        >>> parse_timestamp("2026-03-02T08:30:45Z").tzinfo
        datetime.timezone.utc
    """
    normalized = timestamp_str.replace("Z", "+00:00")

    try:
        dt = datetime.fromisoformat(normalized)
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp: {timestamp_str}") from e

    if dt.tzinfo is None:
        raise ValueError(f"Timestamp must include timezone info: {timestamp_str}")

    return dt.astimezone(UTC)


def elapsed_ms(started: datetime, finished: datetime) -> int:
    """Whole milliseconds between two aware datetimes (never negative)."""
    delta = finished - started
    return max(0, int(delta.total_seconds() * 1000))
