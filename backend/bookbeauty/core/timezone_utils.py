"""
Timezone utilities for BookBeauty.

Salon opening hours are wall-clock times in the booking timezone;
everything persisted is UTC.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytz

from .config import settings


def get_booking_timezone(tz_name: Optional[str] = None) -> pytz.BaseTzInfo:
    """Return the pytz timezone salon hours are expressed in."""
    return pytz.timezone(tz_name or settings.booking_timezone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive values for timezone-aware columns; those are UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: Optional[datetime]) -> int:
    aware = ensure_utc(dt)
    if aware is None:
        return 0
    return int(aware.timestamp() * 1000)


def local_start_to_utc(
    booking_date: date, start_minutes: int, tz: Optional[pytz.BaseTzInfo] = None
) -> datetime:
    """Convert a wall-clock start on a date to an aware UTC datetime."""
    zone = tz or get_booking_timezone()
    naive = datetime.combine(booking_date, datetime.min.time()) + timedelta(minutes=start_minutes)
    return zone.localize(naive).astimezone(timezone.utc)


def local_today_and_minutes(
    now: Optional[datetime] = None, tz: Optional[pytz.BaseTzInfo] = None
) -> tuple[date, int]:
    """Return the local date and minutes since local midnight for ``now``."""
    zone = tz or get_booking_timezone()
    current = ensure_utc(now) or utc_now()
    local = current.astimezone(zone)
    return local.date(), local.hour * 60 + local.minute
