"""Time helpers shared by models and services."""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from app.config import settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded to nearest."""
    delta = ensure_utc(end) - ensure_utc(start)
    return round(delta.total_seconds() / 60)


def business_now() -> datetime:
    """Current time in the business timezone (day and year boundaries)."""
    return datetime.now(ZoneInfo(settings.BUSINESS_TIMEZONE))


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day in the business timezone."""
    tz = ZoneInfo(settings.BUSINESS_TIMEZONE)
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)
