"""
Datetime utilities, the single source of truth for timezone handling.

Rule: every timestamp stored on an Event or Issue is timezone-aware UTC.
Client payloads may send naive or "Z"-suffixed ISO strings; normalize them
with ensure_aware() at the boundary.
"""

from datetime import datetime, timedelta, timezone
from typing import Union


def ensure_aware(dt: Union[datetime, str, None]) -> datetime:
    """
    Coerce a datetime or ISO string into an aware UTC datetime.

    - None → current UTC time
    - "2026-01-01T00:00:00Z" → parsed, tz set to UTC
    - naive datetime → treated as UTC
    - aware datetime in another zone → converted to UTC

    Examples:
        >>> ensure_aware("2026-01-01T00:00:00Z")
        datetime.datetime(2026, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if dt is None:
        return utcnow()

    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.strip().replace("Z", "+00:00"))

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize an aware datetime for storage."""
    return ensure_aware(dt).isoformat()


def window_start(now: datetime, hours: int) -> datetime:
    """Lower bound (inclusive) of a trailing window ending at ``now``."""
    return ensure_aware(now) - timedelta(hours=hours)
