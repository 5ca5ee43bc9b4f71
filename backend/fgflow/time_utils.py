from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Epoch milliseconds; every ledger timestamp uses this unit."""
    return to_ms(now_utc())


def to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def coerce_ms(value: Optional[int | float | datetime | date]) -> Optional[int]:
    """
    Normalize caller-supplied dates to epoch milliseconds.

    - None -> None
    - numbers are taken as epoch milliseconds already
    - a bare date is midnight UTC of that day
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_ms(value)
    if isinstance(value, date):
        return to_ms(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    return int(value)


def month_key(value_ms: int | float) -> str:
    """YYYY-MM bucket (UTC) for a millisecond timestamp."""
    return from_ms(value_ms).strftime("%Y-%m")
