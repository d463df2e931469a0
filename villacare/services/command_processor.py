"""
Inbound WhatsApp/SMS command processing
Cleaners answer booking requests by replying ACCEPT or DECLINE, optionally with a booking code

Twilio delivers at least once and may deliver the same message concurrently.
The only concurrency guard is the unique MessageSid row in processed_messages:
whoever inserts it first processes the message, everyone else acknowledges
and stops. Booking transitions are conditional updates, so a reply racing the
auto-decline job cannot flip a booking twice.
"""

import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qsl

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, NotFoundError, TransportError, ValidationError
from ..models import Booking, BookingStatus, ProcessedMessage, User
from ..shared.validators import mask_phone, normalize_phone
from ..webhook_security import TwilioSignatureVerifier
from .booking_service import mark_booking_responded, transition_from_pending
from .notification_service import (
    notify_already_handled,
    notify_booking_accepted,
    notify_booking_declined,
    notify_no_pending,
    notify_pending_list,
    send_help,
)
from .twilio_service import Notifier

logger = logging.getLogger(__name__)


class CommandAction(str, enum.Enum):
    ACCEPT = "ACCEPT"
    DECLINE = "DECLINE"
    HELP = "HELP"


class CommandOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    HELP = "help"
    DUPLICATE = "duplicate"
    UNKNOWN_SENDER = "unknown_sender"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    CONFLICT = "conflict"
    ERROR = "error"


COMMAND_SYNONYMS = {
    # English
    "ACCEPT": CommandAction.ACCEPT,
    "YES": CommandAction.ACCEPT,
    "Y": CommandAction.ACCEPT,
    "OK": CommandAction.ACCEPT,
    "CONFIRM": CommandAction.ACCEPT,
    "DECLINE": CommandAction.DECLINE,
    "NO": CommandAction.DECLINE,
    "N": CommandAction.DECLINE,
    "REJECT": CommandAction.DECLINE,
    "HELP": CommandAction.HELP,
    "?": CommandAction.HELP,
    # Spanish
    "SI": CommandAction.ACCEPT,
    "SÍ": CommandAction.ACCEPT,
    "ACEPTAR": CommandAction.ACCEPT,
    "ACEPTO": CommandAction.ACCEPT,
    "RECHAZAR": CommandAction.DECLINE,
    "AYUDA": CommandAction.HELP,
    # German, French, Dutch
    "JA": CommandAction.ACCEPT,
    "OUI": CommandAction.ACCEPT,
    "NEIN": CommandAction.DECLINE,
    "NON": CommandAction.DECLINE,
    "NEE": CommandAction.DECLINE,
}

ACTION_VERBS = {CommandAction.ACCEPT: "accept", CommandAction.DECLINE: "decline"}
ACTION_STATUS = {
    CommandAction.ACCEPT: BookingStatus.CONFIRMED,
    CommandAction.DECLINE: BookingStatus.CANCELLED,
}

REFERENCE_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4,8}$")


@dataclass(frozen=True)
class ParsedCommand:
    action: CommandAction
    reference_code: Optional[str] = None


@dataclass(frozen=True)
class InboundRequest:
    """What the transport handed us, before anything is trusted"""

    url: str
    raw_body: bytes
    signature: Optional[str]


@dataclass(frozen=True)
class InboundMessage:
    message_sid: Optional[str]
    from_address: Optional[str]
    body: str

    @classmethod
    def from_raw_body(cls, raw_body: bytes) -> "InboundMessage":
        params = dict(parse_qsl(raw_body.decode("utf-8"), keep_blank_values=True))
        return cls(
            message_sid=params.get("MessageSid") or params.get("SmsMessageSid"),
            from_address=params.get("From"),
            body=params.get("Body", ""),
        )


class AmbiguousBookingError(ValidationError):
    """Command without a code while several bookings are pending"""

    def __init__(self, bookings: list[Booking]):
        super().__init__(f"{len(bookings)} pending bookings, reference code required")
        self.bookings = bookings


def parse_command(body: str) -> ParsedCommand:
    """
    Parse 'ACCEPT', 'yes 7kq3', 'Decline #7KQ3' and friends.

    Raises:
        ValidationError: Unknown keyword, malformed code or trailing text
    """
    tokens = (body or "").strip().split()
    if not tokens:
        raise ValidationError("Empty command")

    keyword = tokens[0].upper().rstrip("!.,")
    action = COMMAND_SYNONYMS.get(keyword)
    if action is None:
        raise ValidationError(f"Unknown command: {tokens[0][:20]}")

    if action is CommandAction.HELP:
        return ParsedCommand(action=action)

    if len(tokens) > 2:
        raise ValidationError("Too many words in command")

    reference_code = None
    if len(tokens) == 2:
        reference_code = tokens[1].upper().lstrip("#")
        if not REFERENCE_CODE_PATTERN.match(reference_code):
            raise ValidationError(f"Invalid booking code: {tokens[1][:20]}")

    return ParsedCommand(action=action, reference_code=reference_code)


class InboundCommandProcessor:
    """Handles one inbound Twilio message end to end"""

    def __init__(self, db: Session, notifier: Notifier, verifier: TwilioSignatureVerifier):
        self.db = db
        self.notifier = notifier
        self.verifier = verifier

    def verify(self, request: InboundRequest) -> InboundMessage:
        """Reject unsigned or tampered requests before any state is touched"""
        if not self.verifier.verify(request.raw_body, request.signature, request.url):
            raise TransportError("Invalid Twilio signature")
        return InboundMessage.from_raw_body(request.raw_body)

    def claim(self, message: InboundMessage) -> bool:
        """
        Insert the ledger row for this MessageSid.

        Returns:
            False if another delivery already claimed the message
        """
        self.db.add(
            ProcessedMessage(
                message_sid=message.message_sid,
                from_phone=message.from_address,
                body=message.body[:1000],
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"ℹ️ Message {message.message_sid} already claimed, skipping")
            return False
        return True

    def resolve_sender(self, message: InboundMessage) -> Optional[User]:
        """Exact match of the normalized sender number against known users"""
        try:
            phone = normalize_phone(message.from_address)
        except ValueError:
            return None
        if not phone:
            return None
        return self.db.query(User).filter(User.phone == phone).first()

    def resolve_booking(self, cleaner: User, command: ParsedCommand) -> Booking:
        """
        Raises:
            NotFoundError: No matching pending booking
            AmbiguousBookingError: No code given and several bookings pending
        """
        query = self.db.query(Booking).filter(
            Booking.cleaner_id == cleaner.id, Booking.status == BookingStatus.PENDING
        )

        if command.reference_code:
            booking = query.filter(Booking.short_code == command.reference_code).first()
            if booking is None:
                raise NotFoundError(f"No pending booking {command.reference_code} for cleaner {cleaner.id}")
            return booking

        pending = query.order_by(Booking.date.asc(), Booking.time.asc(), Booking.id.asc()).all()
        if not pending:
            raise NotFoundError(f"No pending bookings for cleaner {cleaner.id}")
        if len(pending) > 1:
            raise AmbiguousBookingError(pending)
        return pending[0]

    async def apply(self, booking: Booking, action: CommandAction, now: datetime) -> CommandOutcome:
        """
        Raises:
            ConflictError: The booking left PENDING before our update landed
        """
        if not transition_from_pending(self.db, booking, ACTION_STATUS[action]):
            self.db.rollback()
            raise ConflictError(f"Booking {booking.id} is no longer pending")

        mark_booking_responded(self.db, booking.id, now)
        self.db.commit()

        if action is CommandAction.ACCEPT:
            await notify_booking_accepted(self.notifier, booking)
            return CommandOutcome.ACCEPTED

        await notify_booking_declined(self.notifier, booking)
        return CommandOutcome.DECLINED

    async def process(self, message: InboundMessage, now: datetime) -> CommandOutcome:
        cleaner = self.resolve_sender(message)
        if cleaner is None:
            logger.info(f"Message from unknown sender {mask_phone(message.from_address)}, ignoring")
            return CommandOutcome.UNKNOWN_SENDER

        try:
            command = parse_command(message.body)
        except ValidationError as e:
            logger.info(f"⚠️ Invalid command from cleaner {cleaner.id}: {e}")
            await send_help(self.notifier, cleaner.phone)
            return CommandOutcome.INVALID

        if command.action is CommandAction.HELP:
            await send_help(self.notifier, cleaner.phone)
            return CommandOutcome.HELP

        verb = ACTION_VERBS[command.action]
        try:
            booking = self.resolve_booking(cleaner, command)
        except AmbiguousBookingError as e:
            await notify_pending_list(self.notifier, cleaner, e.bookings)
            return CommandOutcome.AMBIGUOUS
        except NotFoundError as e:
            logger.info(f"ℹ️ {e}")
            await notify_no_pending(self.notifier, cleaner, verb, command.reference_code)
            return CommandOutcome.NOT_FOUND

        try:
            return await self.apply(booking, command.action, now)
        except ConflictError as e:
            logger.info(f"ℹ️ {e}")
            await notify_already_handled(self.notifier, cleaner, booking)
            return CommandOutcome.CONFLICT

    def record_outcome(self, message: InboundMessage, outcome: CommandOutcome) -> None:
        """Audit trail only; failures here never affect the acknowledgement"""
        try:
            self.db.query(ProcessedMessage).filter(
                ProcessedMessage.message_sid == message.message_sid
            ).update({ProcessedMessage.outcome: outcome.value}, synchronize_session=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record outcome for {message.message_sid}: {e}")

    async def handle(self, request: InboundRequest, now: datetime) -> CommandOutcome:
        """
        Verify, claim and process one inbound message.

        Only TransportError escapes; every other failure is logged and turned
        into an outcome so the webhook can still acknowledge Twilio.
        """
        message = self.verify(request)

        if not message.message_sid:
            logger.warning("⚠️ Signed webhook without MessageSid, ignoring")
            return CommandOutcome.INVALID

        try:
            if not self.claim(message):
                return CommandOutcome.DUPLICATE
        except Exception:
            self.db.rollback()
            logger.exception(f"❌ Failed to claim message {message.message_sid}")
            return CommandOutcome.ERROR

        try:
            outcome = await self.process(message, now)
        except Exception:
            self.db.rollback()
            logger.exception(f"❌ Failed to process message {message.message_sid}")
            outcome = CommandOutcome.ERROR

        self.record_outcome(message, outcome)
        logger.info(f"📥 Message {message.message_sid} processed: {outcome.value}")
        return outcome
