"""Booking request creation and PENDING transitions shared by the tracker and the command processor"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..models import Booking, BookingResponseTracker, BookingStatus, Property, User
from .notification_service import notify_new_booking_request
from .reference_codes import insert_with_reference_code
from .twilio_service import Notifier

logger = logging.getLogger(__name__)


async def create_booking_request(
    db: Session,
    notifier: Notifier,
    *,
    cleaner: User,
    owner: User,
    villa: Property,
    service: str,
    price: float,
    booking_date: date,
    booking_time: str,
    now: datetime,
    hours: Optional[float] = None,
    notes: Optional[str] = None,
    code_generator: Optional[Callable[[], str]] = None,
) -> Booking:
    """
    Create a PENDING booking together with its response tracker.

    Both rows land in the same commit, so no pending request can exist
    without a tracker. The cleaner is told about the request afterwards.
    """

    def build(code: str) -> list:
        booking = Booking(
            cleaner_id=cleaner.id,
            owner_id=owner.id,
            property_id=villa.id,
            status=BookingStatus.PENDING,
            service=service,
            price=price,
            hours=hours,
            date=booking_date,
            time=booking_time,
            notes=notes,
            short_code=code,
        )
        tracker = BookingResponseTracker(booking=booking, cleaner_id=cleaner.id, created_at=now)
        return [booking, tracker]

    booking, _tracker = insert_with_reference_code(db, build, code_generator=code_generator)
    logger.info(f"✅ Booking request {booking.id} ({booking.short_code}) created for cleaner {cleaner.id}")

    await notify_new_booking_request(notifier, booking)
    return booking


def transition_from_pending(db: Session, booking: Booking, new_status: BookingStatus) -> bool:
    """
    Move a booking out of PENDING with a conditional update.

    The WHERE clause on status makes this a compare-and-swap: whoever loses a
    race (cleaner reply vs. auto-decline) updates zero rows. The caller commits.

    Returns:
        True if this call performed the transition
    """
    updated = (
        db.query(Booking)
        .filter(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
        .update({Booking.status: new_status}, synchronize_session=False)
    )
    # Reload status on next access so the in-memory object matches the row
    db.expire(booking, ["status"])

    if updated:
        logger.info(f"✅ Booking {booking.id} transitioned: PENDING → {new_status.value}")
        return True

    logger.info(f"ℹ️ Booking {booking.id} already left PENDING, no transition to {new_status.value}")
    return False


def mark_booking_responded(db: Session, booking_id: int, now: datetime) -> int:
    """Retire the booking's tracker once the booking left PENDING. The caller commits."""
    return (
        db.query(BookingResponseTracker)
        .filter(
            BookingResponseTracker.booking_id == booking_id,
            BookingResponseTracker.responded_at.is_(None),
            BookingResponseTracker.auto_declined_at.is_(None),
        )
        .update({BookingResponseTracker.responded_at: now}, synchronize_session=False)
    )
