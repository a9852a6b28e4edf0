"""Utility functions for Goal Bingo.

This module provides common helpers for datetime handling, identifier and
token generation, and JSON metadata transformation.
"""

import json
import secrets
import string
import uuid
from datetime import UTC, datetime
from typing import Any

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]

TOKEN_ALPHABET = string.ascii_lowercase + string.digits
SECONDS_PER_DAY = 86_400


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO8601 timestamp string into timezone-aware UTC datetime.

    Args:
        value: ISO8601 timestamp string, datetime object, or None

    Returns:
        Parsed timezone-aware datetime in UTC, or None if input is None

    Raises:
        ValueError: If timestamp format is invalid

    Example:
        >>> dt = parse_datetime("2024-01-15T10:30:00Z")
        >>> dt.tzinfo
        datetime.timezone.utc
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    dt = dateutil_parser.isoparse(value)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as fixed-precision ISO8601 string with 'Z' suffix.

    Microseconds are always written so that stored timestamps sort
    lexically in chronological order.

    Args:
        dt: Datetime object or None

    Returns:
        ISO8601 formatted string or None if input is None

    Example:
        >>> dt = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
        >>> format_iso(dt)
        '2024-01-15T10:30:00.000000Z'
    """
    if dt is None:
        return None
    dt = parse_datetime(dt)
    return dt.isoformat(timespec="microseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Get current UTC timestamp as ISO8601 string with 'Z' suffix."""
    return format_iso(utc_now())  # type: ignore[return-value]


def whole_days_between(start: datetime | str, end: datetime | str) -> int:
    """Count whole elapsed days between two instants (floored, never negative).

    Example:
        >>> whole_days_between("2024-01-01T00:00:00Z", "2024-01-31T12:00:00Z")
        30
    """
    start_dt = parse_datetime(start)
    end_dt = parse_datetime(end)
    seconds = (end_dt - start_dt).total_seconds()  # type: ignore[operator]
    return max(0, int(seconds // SECONDS_PER_DAY))


def new_id() -> str:
    """Generate an opaque 32-character hex identifier."""
    return uuid.uuid4().hex


def generate_token(length: int) -> str:
    """Generate an unguessable lowercase alphanumeric token.

    Used for board share links and community invite codes.

    Example:
        >>> len(generate_token(12))
        12
    """
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def dump_metadata(metadata: dict[str, Any] | None) -> str | None:
    """Serialize event metadata to compact JSON text (None when empty)."""
    if not metadata:
        return None
    return json.dumps(metadata, sort_keys=True, separators=(",", ":"))


def load_metadata(raw: str | None) -> dict[str, Any]:
    """Parse stored event metadata, tolerating missing or malformed values."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}

