"""
Timezone-safe datetime utilities.

All timestamps are stored in UTC. Provider payloads arrive as ISO8601 strings,
epoch seconds, or naive datetimes and are normalized here before persistence.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Return current UTC datetime with timezone info attached.

    Example:
        >>> now = utc_now()
        >>> now.tzinfo
        datetime.timezone.utc
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Convert any datetime to UTC.

    Naive datetimes are assumed to already be UTC (SQLite drops tzinfo on
    round-trip, so values read back from the database are naive).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def minutes_from_now(minutes: int, now: Optional[datetime] = None) -> datetime:
    """Return a UTC datetime `minutes` after `now` (defaults to the current time)."""
    base = ensure_utc(now) if now else utc_now()
    return base + timedelta(minutes=minutes)


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    Convert datetime to ISO8601 UTC string with 'Z' suffix.

    Example:
        >>> dt = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        >>> serialize_datetime(dt)
        '2024-01-01T12:00:00Z'
    """
    if dt is None:
        return None

    iso_string = ensure_utc(dt).isoformat()
    if iso_string.endswith('+00:00'):
        iso_string = iso_string[:-6] + 'Z'
    return iso_string


def parse_iso_datetime(value: Union[str, datetime]) -> datetime:
    """
    Parse ISO8601 string to UTC datetime.

    Example:
        >>> dt = parse_iso_datetime("2024-01-01T12:00:00Z")
        >>> dt.tzinfo
        datetime.timezone.utc
    """
    if isinstance(value, datetime):
        return ensure_utc(value)

    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    return ensure_utc(dt)


def parse_optional_datetime(value: Optional[Union[str, int, float, datetime]]) -> Optional[datetime]:
    """
    Best-effort parse of a provider timestamp.

    Accepts ISO8601 strings, epoch seconds (int/float or numeric strings) and
    datetimes. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value).strip()
    try:
        if text.replace('.', '', 1).isdigit():
            return datetime.fromtimestamp(float(text), tz=timezone.utc)
        return parse_iso_datetime(text)
    except (ValueError, OverflowError):
        return None


def to_epoch_seconds(dt: datetime) -> int:
    """Convert a datetime to integer Unix epoch seconds."""
    return int(ensure_utc(dt).timestamp())


def parse_timestamp_or_now(value: Optional[Union[str, int, float, datetime]]) -> datetime:
    """parse_optional_datetime, falling back to the current time."""
    return parse_optional_datetime(value) or utc_now()
