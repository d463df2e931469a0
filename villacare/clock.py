"""Wall-clock access for the booking lifecycle jobs

Everything below the entry points takes ``now`` explicitly; only the worker,
the cron routes and the webhook read the clock, through ``utcnow``.

``now`` is always naive UTC. Booking dates and times are wall-clock times at
the property, so they go through ``booking_start_utc`` before any comparison.
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import PROPERTY_TIMEZONE

DEFAULT_BOOKING_HOUR = 9


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def booking_start(booking_date: date, booking_time: Optional[str]) -> datetime:
    """Combine a booking's date and 'HH:MM' time; unparseable times fall back to 09:00"""
    hour, minute = DEFAULT_BOOKING_HOUR, 0
    if booking_time:
        try:
            hour_part, _, minute_part = booking_time.strip().partition(":")
            hour = int(hour_part)
            minute = int(minute_part) if minute_part else 0
            if not (0 <= hour < 24 and 0 <= minute < 60):
                raise ValueError(booking_time)
        except ValueError:
            hour, minute = DEFAULT_BOOKING_HOUR, 0
    return datetime.combine(booking_date, datetime.min.time()).replace(hour=hour, minute=minute)


def booking_start_utc(
    booking_date: date, booking_time: Optional[str], tz_name: Optional[str] = None
) -> datetime:
    """Booking start as naive UTC, reading date and time in the property's timezone"""
    local = booking_start(booking_date, booking_time).replace(
        tzinfo=ZoneInfo(tz_name or PROPERTY_TIMEZONE)
    )
    return local.astimezone(timezone.utc).replace(tzinfo=None)
