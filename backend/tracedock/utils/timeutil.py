# tracedock/utils/timeutil.py
"""
Timestamp normalization helpers.

Storage convention (all engines): naive UTC datetimes with microsecond
precision. The API boundary speaks ISO 8601 with a trailing "Z".
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as dtparser


def to_utc_naive(dt: datetime) -> datetime:
    """
    Normalize a datetime to naive UTC.

    - If tz-aware -> convert to UTC and drop tzinfo.
    - If tz-naive -> treat as UTC.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO 8601 string (or pass a datetime through) to naive UTC."""
    if isinstance(value, datetime):
        return to_utc_naive(value)
    return to_utc_naive(dtparser.isoparse(value.strip()))


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_z(dt: Optional[datetime]) -> Optional[str]:
    """Convert a naive UTC datetime to ISO 8601 with millisecond precision and 'Z'."""
    if dt is None:
        return None
    if isinstance(dt, str):
        # Aggregates (MIN/MAX) on SQLite come back as raw strings.
        dt = parse_timestamp(dt)
    return to_utc_naive(dt).isoformat(timespec="milliseconds") + "Z"
