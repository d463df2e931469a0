import os
from datetime import date, datetime
from itertools import count

from cryptography.fernet import Fernet

# Configure before any villacare import reads the environment
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ACCESS_NOTES_KEY", Fernet.generate_key().decode())
os.environ["TWILIO_AUTH_TOKEN"] = "test-auth-token"
os.environ.pop("PUBLIC_BASE_URL", None)
os.environ.pop("CRON_SECRET", None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from villacare.database import Base

# Import models so Base.metadata is populated for create_all.
from villacare.models import Booking, BookingResponseTracker, BookingStatus, Property, Team, User

TWILIO_TEST_TOKEN = "test-auth-token"
T0 = datetime(2026, 3, 2, 8, 0)


class FakeNotifier:
    """Records outbound messages instead of calling Twilio"""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.raise_error = False

    async def send(self, to_phone: str, body: str) -> bool:
        if self.raise_error:
            raise RuntimeError("transport exploded")
        if self.fail:
            return False
        self.sent.append((to_phone, body))
        return True

    def sent_to(self, phone: str) -> list:
        return [body for to_phone, body in self.sent if to_phone == phone]


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_user(db):
    def _make_user(name="Maria", phone="+34600111222", team=None, is_team_leader=False):
        user = User(
            name=name,
            phone=phone,
            team_id=team.id if team else None,
            is_team_leader=is_team_leader,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def team(db):
    team = Team(name="Costa Clean")
    db.add(team)
    db.commit()
    return team


@pytest.fixture
def owner(make_user):
    return make_user(name="Mark", phone="+447957686529")


@pytest.fixture
def cleaner(make_user):
    return make_user(name="Maria", phone="+34600111222")


@pytest.fixture
def villa(db, owner):
    villa = Property(owner_id=owner.id, name="Villa Sol", address="Calle del Sol 4, Alicante")
    db.add(villa)
    db.commit()
    return villa


@pytest.fixture
def make_booking(db, cleaner, owner, villa):
    codes = count(1)

    def _make_booking(with_tracker=False, created_at=T0, **overrides):
        values = {
            "cleaner_id": cleaner.id,
            "owner_id": owner.id,
            "property_id": villa.id,
            "status": BookingStatus.PENDING,
            "service": "Regular Clean",
            "price": 85.0,
            "hours": 3,
            "date": date(2026, 3, 10),
            "time": "10:00",
            "short_code": f"T{next(codes):03d}",
        }
        values.update(overrides)
        booking = Booking(**values)
        db.add(booking)
        if with_tracker:
            db.add(
                BookingResponseTracker(
                    booking=booking, cleaner_id=values["cleaner_id"], created_at=created_at
                )
            )
        db.commit()
        return booking

    return _make_booking
