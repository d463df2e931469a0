"""
Just-in-time access control for sensitive property information

Access notes (key locations, door and alarm codes) are only decrypted from
ACCESS_WINDOW_HOURS before a booking until the booking's start time. Before
the window the caller gets the time it opens; after the start time the notes
are gone for good, whether or not the clean was completed.
"""

import math
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel

from ..clock import booking_start_utc
from ..config import ACCESS_WINDOW_HOURS
from ..encryption import decrypt_access_notes


class AccessNotesResult(BaseModel):
    notes: Optional[str] = None
    can_view: bool
    available_at: Optional[datetime] = None
    message: Optional[str] = None


def access_window_start(booking_at: datetime, window_hours: int = ACCESS_WINDOW_HOURS) -> datetime:
    return booking_at - timedelta(hours=window_hours)


def disclose(
    now: datetime,
    booking_at: datetime,
    encrypted_notes: Optional[str],
    window_hours: int = ACCESS_WINDOW_HOURS,
    decrypt: Callable[[str], str] = decrypt_access_notes,
) -> AccessNotesResult:
    """
    Decide whether access notes may be shown at ``now``.

    The window is [booking_at - window_hours, booking_at], inclusive at both
    ends. Decryption only happens inside it. ``now`` and ``booking_at`` must
    be in the same frame; callers pass naive UTC.
    """
    if now > booking_at:
        return AccessNotesResult(notes=None, can_view=False, available_at=None)

    window_start = access_window_start(booking_at, window_hours)
    if now < window_start:
        return AccessNotesResult(notes=None, can_view=False, available_at=window_start)

    if not encrypted_notes:
        return AccessNotesResult(notes=None, can_view=True, available_at=None)

    return AccessNotesResult(notes=decrypt(encrypted_notes), can_view=True, available_at=None)


def format_available_at(available_at: datetime, now: datetime) -> str:
    """Countdown text for when access notes unlock"""
    diff_seconds = (available_at - now).total_seconds()
    diff_hours = math.ceil(diff_seconds / 3600)

    if diff_hours <= 1:
        return f"Available in {max(1, math.ceil(diff_seconds / 60))} minutes"
    if diff_hours <= 24:
        return f"Available in {diff_hours} hours"
    return f"Available in {math.ceil(diff_hours / 24)} days"


def get_access_notes_for_ui(
    now: datetime,
    booking_date: date,
    booking_time: Optional[str],
    encrypted_notes: Optional[str],
    tz_name: Optional[str] = None,
) -> AccessNotesResult:
    """
    disclose() plus a human-readable message for denied requests.

    ``now`` is naive UTC; the booking's date and time are read in ``tz_name``
    (the property's timezone, PROPERTY_TIMEZONE when None). ``available_at``
    comes back in UTC.
    """
    booking_at = booking_start_utc(booking_date, booking_time, tz_name)
    result = disclose(now, booking_at, encrypted_notes)

    if result.can_view:
        return result

    if result.available_at:
        result.message = format_available_at(result.available_at, now)
    else:
        result.message = "Access notes are no longer available for past bookings"
    return result
