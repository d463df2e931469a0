import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_series_group_id():
    """Generate an identifier shared by every booking of one recurring series"""
    return f"rec_{uuid.uuid4().hex[:16]}"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class SeriesFrequency(str, enum.Enum):
    WEEKLY = "WEEKLY"
    FORTNIGHTLY = "FORTNIGHTLY"
    MONTHLY = "MONTHLY"


class SeriesStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    members = relationship("User", back_populates="team")


class User(Base):
    """A cleaner (booking assignee) or a villa owner (booking requester)"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(20), index=True, nullable=True)  # E.164, normalized on write
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    is_team_leader = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    team = relationship("Team", back_populates="members")


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    timezone = Column(String(64), nullable=True)  # IANA name, PROPERTY_TIMEZONE when unset
    # Key locations, alarm and gate codes. Fernet ciphertext, see encryption.py
    access_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    owner = relationship("User")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False)
    status = Column(
        Enum(BookingStatus, native_enum=False, length=20),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True,
    )
    service = Column(String(255), nullable=False)
    price = Column(Float, nullable=False, default=0)
    hours = Column(Float, nullable=True)
    date = Column(Date, nullable=False, index=True)
    time = Column(String(5), nullable=False, default="09:00")  # HH:MM, property local time
    notes = Column(Text, nullable=True)
    short_code = Column(String(8), unique=True, index=True, nullable=False)

    # Recurring series
    is_recurring = Column(Boolean, default=False, nullable=False)
    series_group_id = Column(String(64), index=True, nullable=True)
    series_parent_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    series_frequency = Column(Enum(SeriesFrequency, native_enum=False, length=20), nullable=True)
    series_status = Column(Enum(SeriesStatus, native_enum=False, length=20), nullable=True)
    skipped = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    cleaner = relationship("User", foreign_keys=[cleaner_id])
    owner = relationship("User", foreign_keys=[owner_id])
    property = relationship("Property")
    series_parent = relationship("Booking", remote_side=[id])
    response_tracker = relationship("BookingResponseTracker", back_populates="booking", uselist=False)


class BookingResponseTracker(Base):
    """Escalation state for a booking request awaiting the cleaner's answer"""

    __tablename__ = "booking_response_trackers"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False)

    # Set once, never cleared
    reminder_sent_at = Column(DateTime, nullable=True)
    escalated_at = Column(DateTime, nullable=True)
    auto_declined_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)

    booking = relationship("Booking", back_populates="response_tracker")


class ProcessedMessage(Base):
    """Idempotency ledger for inbound Twilio messages, keyed by MessageSid"""

    __tablename__ = "processed_messages"

    id = Column(Integer, primary_key=True, index=True)
    message_sid = Column(String(64), unique=True, nullable=False)
    from_phone = Column(String(50), nullable=True)
    body = Column(Text, nullable=True)
    outcome = Column(String(50), nullable=True)  # audit only, never read for dedup
    received_at = Column(DateTime, server_default=func.now())
