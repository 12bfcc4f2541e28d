"""UTC-everywhere time handling. Invoice, due and payment dates are all UTC."""

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Services take a ``clock`` defaulting to this so tests can pin time.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
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


def add_days(dt: datetime, days: int) -> datetime:
    """Shift an aware datetime by whole days, result in UTC."""
    return to_utc(dt) + timedelta(days=days)


def days_past(deadline: datetime, now: datetime) -> int:
    """Whole days elapsed since ``deadline``; 0 if it has not passed."""
    elapsed = to_utc(now) - to_utc(deadline)
    return max(0, elapsed.days)
