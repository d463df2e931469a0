"""
Booking Notification Service
Plain-text message templates for every booking lifecycle event

Every send goes through send_notification, which logs and swallows failures:
callers have already committed the state a message reports, and a failed
send must never undo or block it.
"""

import logging
from typing import Optional

from ..config import FRONTEND_URL
from ..models import Booking, User
from ..shared.validators import mask_phone
from .twilio_service import Notifier

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "*VillaCare Commands:*\n\n"
    "• ACCEPT or YES - Accept your pending booking\n"
    "• DECLINE or NO - Decline your pending booking\n"
    "• ACCEPT 7KQ3 - Accept a specific booking by its code\n"
    "• HELP - Show this message\n\n"
    f"For other questions, visit {FRONTEND_URL}"
)


def format_booking_date(booking: Booking) -> str:
    """e.g. 'Mon 12 Jan at 10:00'"""
    return f"{booking.date.strftime('%a %d %b')} at {booking.time}"


def _name(user: Optional[User], fallback: str) -> str:
    return (user.name if user and user.name else None) or fallback


async def send_notification(
    notifier: Notifier, to_phone: Optional[str], notification_type: str, body: str
) -> bool:
    """
    Best-effort send. Never raises.

    Returns:
        True if the notifier accepted the message
    """
    if not to_phone:
        logger.debug(f"⚠️ No phone number for {notification_type} notification")
        return False

    try:
        sent = await notifier.send(to_phone, body)
    except Exception as e:
        logger.error(f"❌ Failed to send {notification_type} to {mask_phone(to_phone)}: {e}")
        return False

    if sent:
        logger.info(f"✅ {notification_type} sent to {mask_phone(to_phone)}")
    else:
        logger.warning(f"⚠️ {notification_type} not delivered to {mask_phone(to_phone)}")
    return sent


async def notify_new_booking_request(notifier: Notifier, booking: Booking) -> bool:
    message = (
        f"*New Booking Request* 🏡\n\n"
        f"{_name(booking.owner, 'An owner')} wants a {booking.service} at "
        f"{booking.property.name} on {format_booking_date(booking)}. €{booking.price:.2f}\n\n"
        f"Reply ACCEPT {booking.short_code} or DECLINE {booking.short_code}"
    )
    return await send_notification(notifier, booking.cleaner.phone, "booking_request", message)


async def notify_booking_reminder(notifier: Notifier, booking: Booking) -> bool:
    message = (
        f"Reminder: {_name(booking.owner, 'An owner')}'s {booking.service} on "
        f"{format_booking_date(booking)} is waiting for your confirmation.\n\n"
        f"Reply ACCEPT {booking.short_code} or DECLINE {booking.short_code}"
    )
    return await send_notification(notifier, booking.cleaner.phone, "booking_reminder", message)


async def notify_booking_escalated(notifier: Notifier, booking: Booking) -> bool:
    message = (
        f"{_name(booking.owner, 'An owner')}'s booking on {format_booking_date(booking)} has been "
        f"shared with your team due to no response. Please confirm soon or a team member "
        f"may cover it. Code: {booking.short_code}"
    )
    return await send_notification(notifier, booking.cleaner.phone, "booking_escalated", message)


async def notify_team_coverage(notifier: Notifier, booking: Booking, member: User) -> bool:
    message = (
        f"*Team Coverage Needed*\n\n"
        f"{_name(booking.cleaner, 'A teammate')} hasn't responded to a booking. Can you cover "
        f"{booking.service} at {booking.property.name} on {format_booking_date(booking)}? "
        f"€{booking.price:.2f}\n\n{FRONTEND_URL}/dashboard?tab=bookings&cover={booking.id}"
    )
    return await send_notification(notifier, member.phone, "team_coverage", message)


async def notify_auto_declined(notifier: Notifier, booking: Booking) -> dict:
    """Tell both sides the request expired unanswered"""
    owner_message = (
        f"*Booking Not Confirmed*\n\n"
        f"Unfortunately, {_name(booking.cleaner, 'your cleaner')} wasn't able to confirm your "
        f"booking for {format_booking_date(booking)} in time.\n\n"
        f"Please find an alternative cleaner at {FRONTEND_URL}"
    )
    cleaner_message = (
        f"The booking from {_name(booking.owner, 'an owner')} for "
        f"{format_booking_date(booking)} was automatically declined due to no response. "
        f"Please respond to bookings within 6 hours."
    )
    return {
        "owner_sent": await send_notification(
            notifier, booking.owner.phone, "booking_auto_declined", owner_message
        ),
        "cleaner_sent": await send_notification(
            notifier, booking.cleaner.phone, "booking_auto_declined", cleaner_message
        ),
    }


async def notify_booking_accepted(notifier: Notifier, booking: Booking) -> dict:
    cleaner_message = (
        f"✅ *Booking Accepted!*\n\n{format_booking_date(booking)}\n"
        f"{booking.property.address or booking.property.name}\n\nThe owner has been notified."
    )
    owner_message = (
        f"*Booking Confirmed!* ✅\n\n{_name(booking.cleaner, 'Your cleaner')} has accepted your "
        f"booking for {format_booking_date(booking)}.\n\n- VillaCare"
    )
    return {
        "cleaner_sent": await send_notification(
            notifier, booking.cleaner.phone, "booking_accepted", cleaner_message
        ),
        "owner_sent": await send_notification(
            notifier, booking.owner.phone, "booking_confirmed", owner_message
        ),
    }


async def notify_booking_declined(notifier: Notifier, booking: Booking) -> dict:
    cleaner_message = (
        f"❌ *Booking Declined*\n\n{format_booking_date(booking)} booking has been declined. "
        f"The owner will be notified to find another cleaner."
    )
    owner_message = (
        f"*Booking Declined* ❌\n\nUnfortunately, {_name(booking.cleaner, 'your cleaner')} is not "
        f"available for {format_booking_date(booking)}.\n\n"
        f"Please try booking with another cleaner at {FRONTEND_URL}\n\n- VillaCare"
    )
    return {
        "cleaner_sent": await send_notification(
            notifier, booking.cleaner.phone, "booking_declined", cleaner_message
        ),
        "owner_sent": await send_notification(
            notifier, booking.owner.phone, "booking_declined", owner_message
        ),
    }


def build_pending_list(bookings: list[Booking]) -> str:
    lines = [
        f"• {booking.short_code}: {format_booking_date(booking)} - {booking.property.name}"
        for booking in bookings
    ]
    return (
        "You have several pending bookings. Reply with the code, e.g. "
        f"ACCEPT {bookings[0].short_code}\n\n" + "\n".join(lines)
    )


async def notify_pending_list(notifier: Notifier, cleaner: User, bookings: list[Booking]) -> bool:
    return await send_notification(
        notifier, cleaner.phone, "pending_disambiguation", build_pending_list(bookings)
    )


async def notify_no_pending(
    notifier: Notifier, cleaner: User, verb: str, reference_code: Optional[str] = None
) -> bool:
    if reference_code:
        message = f"No pending booking with code {reference_code} found to {verb}."
    else:
        message = f"No pending bookings found to {verb}."
    return await send_notification(notifier, cleaner.phone, "no_pending_booking", message)


async def notify_already_handled(notifier: Notifier, cleaner: User, booking: Booking) -> bool:
    message = (
        f"Booking {booking.short_code} for {format_booking_date(booking)} is already "
        f"{booking.status.value.lower()}."
    )
    return await send_notification(notifier, cleaner.phone, "booking_already_handled", message)


async def send_help(notifier: Notifier, to_phone: str) -> bool:
    return await send_notification(notifier, to_phone, "help", HELP_TEXT)
