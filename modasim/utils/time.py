from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

UTC_TZ = ZoneInfo("UTC")


def now_utc() -> datetime:
    return datetime.now(tz=UTC_TZ)


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC.

    Contract:
    - If dt is naive, treat it as UTC (the game has no local time).
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC_TZ)
    return dt.astimezone(UTC_TZ)


def normalize_day_key(value: date | datetime | str) -> date:
    """
    Normalize anything date-like to a day key (UTC calendar day).

    Use this everywhere a day key is created or compared.
    """
    if isinstance(value, datetime):
        return to_utc(value).date()
    if isinstance(value, date):
        return value
    return parse_day_key(value)


def parse_day_key(s: str) -> date:
    """Accepts YYYY-MM-DD or YYYYMMDD."""
    d = str(s).strip()
    if len(d) == 8 and d.isdigit():
        return datetime.strptime(d, "%Y%m%d").date()
    return datetime.strptime(d[:10], "%Y-%m-%d").date()


def format_day_key(day: date) -> str:
    return normalize_day_key(day).isoformat()


def add_days(day: date, n: int) -> date:
    return normalize_day_key(day) + timedelta(days=int(n))


def cycle_key(day: date) -> str:
    """Monthly cycle key, YYYY-MM."""
    d = normalize_day_key(day)
    return f"{d.year:04d}-{d.month:02d}"
