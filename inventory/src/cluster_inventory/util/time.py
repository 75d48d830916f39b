from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso(seconds: bool = True) -> str:
    """
    Return current UTC time in ISO-8601 format.
    - If seconds is True, use seconds precision (stable strings).
    - Else, use milliseconds precision.
    """
    if seconds:
        return utc_now().isoformat(timespec="seconds")
    return utc_now().isoformat(timespec="milliseconds")


def utc_today() -> date:
    return utc_now().date()


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_utc(value: str) -> datetime:
    raw = (value or "").strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(raw))


def parse_day(value: str) -> date:
    """
    Parse a day-granularity timestamp. Accepts 'YYYY-MM-DD' and full ISO-8601
    timestamps (time part ignored).
    """
    raw = (value or "").strip()
    if len(raw) == 10:
        return date.fromisoformat(raw)
    return parse_iso_utc(raw).date()


def age_in_days(created_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """
    Whole days elapsed since created_at, never less than 1.
    """
    if created_at is None:
        return 1
    now = as_utc(now) if now is not None else utc_now()
    days = (now - as_utc(created_at)).days
    return max(1, days)
