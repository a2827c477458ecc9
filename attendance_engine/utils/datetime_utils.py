"""
Datetime helpers.
- Job bookkeeping (scheduled/started/finished, audit entries) is stored in UTC.
- Punch timestamps are kept as the terminal reports them (terminal wall clock).
"""
from datetime import date, datetime, timezone
from typing import Optional

UTC = timezone.utc


def now_utc() -> datetime:
    """Current time in UTC (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """If dt is naive, treat as UTC and return timezone-aware UTC. If already aware, convert to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def wall_clock(dt: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo so punch times compare the same way whether or not the database kept the offset."""
    if dt is None:
        return None
    return dt.replace(tzinfo=None)


def parse_timestamp(value) -> datetime:
    """
    Parse a punch timestamp coming from a terminal payload.

    Accepts datetime objects, ISO-8601 strings and epoch seconds.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise ValueError(f"Unparseable timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, UTC).replace(tzinfo=None)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    raise ValueError(f"Unparseable timestamp: {value!r}")


def to_iso_seconds(dt: datetime) -> str:
    """ISO-8601 rendering truncated to whole seconds (used in punch transaction ids)."""
    return wall_clock(dt).replace(microsecond=0).isoformat()
