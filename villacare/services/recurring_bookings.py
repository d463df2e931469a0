"""
Recurring bookings
Keeps every active series topped up with future bookings, and manages series state

A series is a head booking (series_parent_id is NULL) plus the children the
generator creates for it, all sharing series_group_id. Children are never
created by direct user action.
"""

import enum
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ..clock import booking_start_utc
from ..config import MIN_FUTURE_BOOKINGS
from ..exceptions import ConflictError, ValidationError
from ..models import (
    Booking,
    BookingStatus,
    SeriesFrequency,
    SeriesStatus,
    generate_series_group_id,
)
from .reference_codes import insert_with_reference_code

logger = logging.getLogger(__name__)


class SeriesAction(str, enum.Enum):
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


SERIES_ACTION_STATUS = {
    SeriesAction.PAUSE: SeriesStatus.PAUSED,
    SeriesAction.RESUME: SeriesStatus.ACTIVE,
    SeriesAction.CANCEL: SeriesStatus.CANCELLED,
}


def next_occurrence(anchor: date, frequency: SeriesFrequency, steps: int) -> date:
    """The date ``steps`` frequency steps after ``anchor``"""
    if frequency is SeriesFrequency.WEEKLY:
        return anchor + timedelta(days=7 * steps)
    if frequency is SeriesFrequency.FORTNIGHTLY:
        return anchor + timedelta(days=14 * steps)
    if frequency is SeriesFrequency.MONTHLY:
        # Offsets are taken from the anchor, not chained, so Jan 31 gives Feb 28, Mar 31, ...
        return anchor + relativedelta(months=steps)
    raise ValueError(f"Unknown series frequency: {frequency}")


def upcoming_dates(
    anchor: date,
    frequency: SeriesFrequency,
    count: int,
    now: datetime,
    booking_time: Optional[str],
    tz_name: Optional[str] = None,
) -> list[date]:
    """
    The first ``count`` occurrences after ``anchor`` that start after ``now``.

    A lapsed series (paused for a while, or an old anchor) is stepped forward
    past the missed occurrences instead of refilling them.
    """
    dates = []
    steps = 0
    while len(dates) < count:
        steps += 1
        candidate = next_occurrence(anchor, frequency, steps)
        if booking_start_utc(candidate, booking_time, tz_name) > now:
            dates.append(candidate)
    return dates


def series_timezone(head: Booking) -> Optional[str]:
    return head.property.timezone if head.property else None


def is_upcoming(booking: Booking, now: datetime, tz_name: Optional[str] = None) -> bool:
    return booking_start_utc(booking.date, booking.time, tz_name) > now


def count_future_pending(
    db: Session, series_group_id: str, now: datetime, tz_name: Optional[str] = None
) -> int:
    """
    PENDING bookings in the group that haven't started yet. Skipped
    occurrences are deliberate gaps and don't count.
    """
    # Local dates can trail the UTC date by a day; the exact cut is made on start time
    candidates = (
        db.query(Booking)
        .filter(
            Booking.series_group_id == series_group_id,
            Booking.status == BookingStatus.PENDING,
            Booking.date >= now.date() - timedelta(days=1),
            Booking.skipped.is_(False),
        )
        .all()
    )
    return sum(1 for booking in candidates if is_upcoming(booking, now, tz_name))


def get_latest_in_series(db: Session, series_group_id: str) -> Optional[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.series_group_id == series_group_id)
        .order_by(Booking.date.desc(), Booking.id.desc())
        .first()
    )


def get_active_series_heads(db: Session) -> list[Booking]:
    return (
        db.query(Booking)
        .filter(
            Booking.is_recurring.is_(True),
            Booking.series_status == SeriesStatus.ACTIVE,
            Booking.series_parent_id.is_(None),
            Booking.series_group_id.isnot(None),
            Booking.series_frequency.isnot(None),
        )
        .order_by(Booking.id.asc())
        .all()
    )


def create_series_child(
    db: Session,
    head: Booking,
    booking_date: date,
    code_generator: Optional[Callable[[], str]] = None,
) -> Booking:
    """Clone the head into a new PENDING occurrence with its own reference code"""

    def build(code: str) -> list:
        return [
            Booking(
                cleaner_id=head.cleaner_id,
                owner_id=head.owner_id,
                property_id=head.property_id,
                status=BookingStatus.PENDING,
                service=head.service,
                price=head.price,
                hours=head.hours,
                date=booking_date,
                time=head.time,
                notes=head.notes,
                short_code=code,
                is_recurring=True,
                series_group_id=head.series_group_id,
                series_frequency=head.series_frequency,
                series_status=head.series_status,
                series_parent_id=head.id,
            )
        ]

    (child,) = insert_with_reference_code(db, build, code_generator=code_generator)
    return child


def top_up_series(
    db: Session,
    head: Booking,
    now: datetime,
    min_future: int = MIN_FUTURE_BOOKINGS,
    code_generator: Optional[Callable[[], str]] = None,
) -> int:
    """
    Create enough bookings for one series to reach ``min_future``.

    New occurrences follow the latest booking of the group but are never
    dated before ``now``.

    Returns:
        Number of bookings created
    """
    tz_name = series_timezone(head)
    future_pending = count_future_pending(db, head.series_group_id, now, tz_name)
    if future_pending >= min_future:
        return 0

    latest = get_latest_in_series(db, head.series_group_id)
    if latest is None:
        return 0

    needed = min_future - future_pending
    dates = upcoming_dates(latest.date, head.series_frequency, needed, now, head.time, tz_name)
    for booking_date in dates:
        create_series_child(db, head, booking_date, code_generator=code_generator)

    logger.info(f"✅ Series {head.series_group_id}: created {len(dates)} bookings after {latest.date}")
    return len(dates)


def generate_recurring_bookings(
    db: Session,
    now: datetime,
    min_future: int = MIN_FUTURE_BOOKINGS,
    code_generator: Optional[Callable[[], str]] = None,
) -> dict:
    """
    Ensure every ACTIVE series has at least ``min_future`` future pending bookings.
    Should be run as a scheduled job (daily). Paused and cancelled series are left alone.

    Returns:
        dict: series_processed, bookings_created and per-series errors
    """
    result = {"series_processed": 0, "bookings_created": 0, "errors": []}
    for head in get_active_series_heads(db):
        group_id = head.series_group_id
        try:
            result["bookings_created"] += top_up_series(
                db, head, now, min_future=min_future, code_generator=code_generator
            )
            result["series_processed"] += 1
        except Exception as e:
            db.rollback()
            result["errors"].append(f"Series {group_id}: {str(e)}")
            logger.error(f"❌ Failed to top up series {group_id}: {str(e)}")
            continue

    if result["bookings_created"] or result["errors"]:
        logger.info(f"📊 Recurring bookings summary: {result}")
    return result


def start_series(
    db: Session,
    booking: Booking,
    frequency: SeriesFrequency,
    now: datetime,
    count: int = MIN_FUTURE_BOOKINGS,
    code_generator: Optional[Callable[[], str]] = None,
) -> list[Booking]:
    """
    Turn a confirmed or completed booking into the head of a new series and
    create its next ``count`` occurrences that start after ``now``.
    """
    if booking.status not in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
        raise ValidationError("Only confirmed or completed bookings can be made recurring")
    if booking.is_recurring:
        raise ConflictError("Booking is already recurring")

    booking.is_recurring = True
    booking.series_frequency = frequency
    booking.series_group_id = generate_series_group_id()
    booking.series_status = SeriesStatus.ACTIVE
    booking.series_parent_id = None
    db.commit()

    children = [
        create_series_child(db, booking, booking_date, code_generator=code_generator)
        for booking_date in upcoming_dates(
            booking.date, frequency, count, now, booking.time, series_timezone(booking)
        )
    ]
    logger.info(
        f"✅ Booking {booking.id} started {frequency.value} series {booking.series_group_id} "
        f"with {len(children)} bookings"
    )
    return children


def update_series_status(db: Session, booking: Booking, action: SeriesAction, now: datetime) -> dict:
    """
    Pause, resume or cancel the series a booking belongs to.
    Cancelling also cancels the group's future pending bookings.
    """
    if not booking.is_recurring or not booking.series_group_id:
        raise ValidationError("Booking is not part of a recurring series")

    group_id = booking.series_group_id
    new_status = SERIES_ACTION_STATUS[action]

    updated = (
        db.query(Booking)
        .filter(Booking.series_group_id == group_id)
        .update({Booking.series_status: new_status}, synchronize_session=False)
    )

    cancelled = 0
    if action is SeriesAction.CANCEL:
        cancelled = (
            db.query(Booking)
            .filter(
                Booking.series_group_id == group_id,
                Booking.status == BookingStatus.PENDING,
                Booking.date >= now.date(),
            )
            .update({Booking.status: BookingStatus.CANCELLED}, synchronize_session=False)
        )

    db.commit()
    db.expire_all()
    logger.info(f"🔄 Series {group_id} → {new_status.value} ({updated} bookings, {cancelled} cancelled)")
    return {"action": action.value, "updated_count": updated, "cancelled_count": cancelled}


def skip_booking(db: Session, booking: Booking) -> Booking:
    """Mark one occurrence as a deliberate gap; the generator won't refill it"""
    if not booking.is_recurring:
        raise ValidationError("Only bookings in a recurring series can be skipped")
    if booking.status != BookingStatus.PENDING:
        raise ConflictError(f"Booking {booking.id} is {booking.status.value}, cannot skip")

    booking.skipped = True
    db.commit()
    logger.info(f"⏭️ Booking {booking.id} skipped in series {booking.series_group_id}")
    return booking


def detach_from_series(db: Session, booking: Booking) -> Booking:
    """Make a booking one-time; the rest of the series is untouched"""
    if not booking.is_recurring:
        raise ValidationError("Booking is not recurring")

    booking.is_recurring = False
    booking.series_frequency = None
    booking.series_group_id = None
    booking.series_status = None
    booking.series_parent_id = None
    db.commit()
    return booking


def get_series_info(db: Session, booking: Booking, now: datetime) -> Optional[dict]:
    if not booking.series_group_id:
        return None

    tz_name = series_timezone(booking)
    all_in_series = (
        db.query(Booking)
        .filter(Booking.series_group_id == booking.series_group_id)
        .order_by(Booking.date.asc(), Booking.id.asc())
        .all()
    )
    head = next((b for b in all_in_series if b.series_parent_id is None), None)

    return {
        "group_id": booking.series_group_id,
        "frequency": booking.series_frequency,
        "status": head.series_status if head else SeriesStatus.ACTIVE,
        "total_bookings": len(all_in_series),
        "upcoming_bookings": [
            b
            for b in all_in_series
            if b.status == BookingStatus.PENDING and not b.skipped and is_upcoming(b, now, tz_name)
        ],
        "completed_bookings": [b for b in all_in_series if b.status == BookingStatus.COMPLETED],
        "skipped_bookings": [b for b in all_in_series if b.skipped],
        "all_bookings": all_in_series,
    }
