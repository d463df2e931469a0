"""
Booking response escalation
Handles CREATED → REMINDED → ESCALATED → AUTO_DECLINED for unanswered booking requests

Stages only move forward, and RESPONDED absorbs a tracker from any stage once
its booking leaves PENDING. Each action is guarded by its own unset timestamp
and the timestamp is committed right after the action, so re-running the scan
at the same or a later time never repeats an action; a crash between a send
and its commit can at worst duplicate that one message.
Should be run as a scheduled job (every 10 minutes).
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import AUTO_DECLINE_AFTER_MINUTES, ESCALATE_AFTER_MINUTES, REMINDER_AFTER_MINUTES
from ..models import BookingResponseTracker, BookingStatus, User
from .booking_service import transition_from_pending
from .notification_service import (
    notify_auto_declined,
    notify_booking_escalated,
    notify_booking_reminder,
    notify_team_coverage,
)
from .twilio_service import Notifier

logger = logging.getLogger(__name__)


class TrackerStage(str, enum.Enum):
    CREATED = "CREATED"
    REMINDED = "REMINDED"
    ESCALATED = "ESCALATED"
    AUTO_DECLINED = "AUTO_DECLINED"
    RESPONDED = "RESPONDED"


class EscalationAction(str, enum.Enum):
    AUTO_DECLINE = "AUTO_DECLINE"
    ESCALATE = "ESCALATE"
    REMIND = "REMIND"


@dataclass(frozen=True)
class EscalationPolicy:
    remind_after: timedelta = timedelta(minutes=REMINDER_AFTER_MINUTES)
    escalate_after: timedelta = timedelta(minutes=ESCALATE_AFTER_MINUTES)
    auto_decline_after: timedelta = timedelta(minutes=AUTO_DECLINE_AFTER_MINUTES)


DEFAULT_POLICY = EscalationPolicy()


def tracker_stage(tracker: BookingResponseTracker) -> TrackerStage:
    """Most severe stage the tracker has reached"""
    if tracker.responded_at is not None:
        return TrackerStage.RESPONDED
    if tracker.auto_declined_at is not None:
        return TrackerStage.AUTO_DECLINED
    if tracker.escalated_at is not None:
        return TrackerStage.ESCALATED
    if tracker.reminder_sent_at is not None:
        return TrackerStage.REMINDED
    return TrackerStage.CREATED


def due_action(
    tracker: BookingResponseTracker, now: datetime, policy: EscalationPolicy = DEFAULT_POLICY
) -> Optional[EscalationAction]:
    """
    Pick the action to take for a still-pending request.

    Thresholds are checked longest first, so a tracker first seen long after
    creation (e.g. after a scheduler outage) goes straight to auto-decline
    without a pointless reminder on the way.
    """
    age = now - tracker.created_at

    if age >= policy.auto_decline_after and tracker.auto_declined_at is None:
        return EscalationAction.AUTO_DECLINE
    if age >= policy.escalate_after and tracker.escalated_at is None:
        return EscalationAction.ESCALATE
    if age >= policy.remind_after and tracker.reminder_sent_at is None:
        return EscalationAction.REMIND
    return None


def get_open_trackers(db: Session) -> list[BookingResponseTracker]:
    return (
        db.query(BookingResponseTracker)
        .filter(
            BookingResponseTracker.responded_at.is_(None),
            BookingResponseTracker.auto_declined_at.is_(None),
        )
        .order_by(BookingResponseTracker.created_at.asc())
        .all()
    )


def get_team_mates(db: Session, cleaner: User) -> list[User]:
    """Every other member of the cleaner's team, leader included"""
    if not cleaner.team_id:
        return []
    return (
        db.query(User)
        .filter(User.team_id == cleaner.team_id, User.id != cleaner.id)
        .order_by(User.is_team_leader.desc(), User.id.asc())
        .all()
    )


async def process_tracker(
    db: Session,
    notifier: Notifier,
    tracker: BookingResponseTracker,
    now: datetime,
    policy: EscalationPolicy = DEFAULT_POLICY,
) -> Optional[TrackerStage]:
    """
    Advance one tracker.

    Returns:
        The stage entered by this call, or None when nothing was due
    """
    booking = tracker.booking

    # Confirmed, declined or cancelled elsewhere
    if booking.status != BookingStatus.PENDING:
        tracker.responded_at = now
        db.commit()
        logger.info(f"✅ Booking {booking.id} responded ({booking.status.value}), tracker retired")
        return TrackerStage.RESPONDED

    action = due_action(tracker, now, policy)
    if action is None:
        return None

    if action is EscalationAction.AUTO_DECLINE:
        if not transition_from_pending(db, booking, BookingStatus.CANCELLED):
            # Lost the race to a reply that landed after we loaded the booking
            tracker.responded_at = now
            db.commit()
            return TrackerStage.RESPONDED

        # Cancellation and flag commit together; the messages follow the commit
        tracker.auto_declined_at = now
        db.commit()
        await notify_auto_declined(notifier, booking)
        logger.info(f"🔄 Booking {booking.id} auto-declined after {now - tracker.created_at}")
        return TrackerStage.AUTO_DECLINED

    if action is EscalationAction.ESCALATE:
        await notify_booking_escalated(notifier, booking)

        team_mates = get_team_mates(db, booking.cleaner)
        for member in team_mates:
            await notify_team_coverage(notifier, booking, member)

        tracker.escalated_at = now
        db.commit()
        logger.info(f"🔄 Booking {booking.id} escalated to {len(team_mates)} team members")
        return TrackerStage.ESCALATED

    if action is EscalationAction.REMIND:
        await notify_booking_reminder(notifier, booking)
        tracker.reminder_sent_at = now
        db.commit()
        logger.info(f"🔄 Reminder sent for booking {booking.id}")
        return TrackerStage.REMINDED

    raise ValueError(f"Unhandled escalation action: {action}")


async def scan(
    db: Session,
    notifier: Notifier,
    now: datetime,
    policy: EscalationPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Process every open tracker once.

    Returns:
        dict: Summary of transitions made
    """
    summary = {
        "processed": 0,
        "responded": 0,
        "reminded": 0,
        "escalated": 0,
        "auto_declined": 0,
        "errors": 0,
    }
    counters = {
        TrackerStage.RESPONDED: "responded",
        TrackerStage.REMINDED: "reminded",
        TrackerStage.ESCALATED: "escalated",
        TrackerStage.AUTO_DECLINED: "auto_declined",
    }

    trackers = get_open_trackers(db)

    for tracker in trackers:
        tracker_id = tracker.id
        try:
            stage = await process_tracker(db, notifier, tracker, now, policy)
            if stage is not None:
                summary[counters[stage]] += 1
            summary["processed"] += 1
        except Exception as e:
            db.rollback()
            summary["errors"] += 1
            logger.error(f"❌ Failed to process response tracker {tracker_id}: {str(e)}")
            continue

    if summary["processed"] or summary["errors"]:
        logger.info(f"📊 Booking response scan summary: {summary}")
    return summary
