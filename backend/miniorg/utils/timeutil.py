"""Day-boundary and timezone helpers.

Datetimes are persisted as naive UTC. Day boundaries are computed in the
user's timezone and converted back to naive UTC for queries.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def as_aware(dt: datetime) -> datetime:
    """Attach UTC to a naive UTC datetime read back from the database."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def is_known_zone(tz_name: Optional[str]) -> bool:
    if not tz_name:
        return False
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def local_day(moment: datetime, tz_name: Optional[str] = None) -> date:
    return as_aware(moment).astimezone(get_zone(tz_name)).date()


def day_bounds(day: date, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Return naive-UTC ``[start_of_day, end_of_day]`` for a local calendar day."""
    zone = get_zone(tz_name)
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day, time.max, tzinfo=zone)
    return to_utc_naive(start), to_utc_naive(end)


def start_of_day(day: date, tz_name: Optional[str] = None) -> datetime:
    return day_bounds(day, tz_name)[0]


def parse_day(value: Optional[str], tz_name: Optional[str] = None, now: Optional[datetime] = None) -> date:
    """Parse ``YYYY-MM-DD`` or an ISO datetime into a local day; default today."""
    if not value:
        return local_day(now or utcnow(), tz_name)
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"invalid date: {value}") from exc
    if parsed.tzinfo is None:
        return parsed.date()
    return local_day(parsed, tz_name)


def tomorrow(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> date:
    return local_day(now or utcnow(), tz_name) + timedelta(days=1)
