# Overview: UTC time helpers; stored datetimes are UTC-naive, API output carries a trailing Z.

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_from(start: datetime, days: int) -> datetime:
    """Due dates, job deadlines and quotation validity are whole days from start."""
    return start + timedelta(days=days)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string from a request body into a UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC (valid_from / valid_until bounds)
    - offsets ("Z", "+02:00") are converted to UTC, then tzinfo is dropped

    Raises ValueError on malformed input; callers turn it into a ValidationError.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize for JSON. Naive datetimes are UTC; plain dates pass through as
    YYYY-MM-DD.
    """
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc).replace(microsecond=0)
    return value.isoformat().replace("+00:00", "Z")
