"""
Standardized UTC timestamp utilities.

Order records store ISO 8601 timestamps with an explicit UTC offset.
Order numbers use a compact YYYYMMDD date stamp.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Return current UTC time with timezone info.

    Use this instead of datetime.now() or datetime.utcnow() to ensure
    timezone-aware UTC timestamps.
    """
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize as ISO 8601; naive datetimes are assumed to be UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    """
    Parse a timestamp written by to_iso() (or a "YYYY-MM-DD HH:MM:SS" string).

    Always returns a timezone-aware datetime, or None for empty input.
    """
    if not s:
        return None
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def date_stamp(dt: Optional[datetime] = None) -> str:
    """YYYYMMDD for order numbers."""
    return (dt or utc_now()).strftime("%Y%m%d")


def hours_ago(hours: int) -> datetime:
    """Cutoff for abandoned-draft cleanup."""
    return utc_now() - timedelta(hours=hours)
