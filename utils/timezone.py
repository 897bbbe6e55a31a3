"""UTC time handling and the clock seam used by time-dependent components."""

from datetime import datetime, timezone
from typing import Callable

# Anything that returns "now" as an aware UTC datetime.
# Services take one of these so tests can move time without sleeping.
Clock = Callable[[], datetime]


def now_utc() -> datetime:
    """
    Current time in UTC.

    This is the default clock everywhere. Never call datetime.now() directly.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert an aware datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime read back from storage.

    psycopg2 returns timestamptz values with a fixed-offset tzinfo and
    some drivers return naive values for `timestamp` columns; both are
    treated as UTC here.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)
