import pytest
from sqlalchemy.exc import IntegrityError

from villacare.exceptions import ConflictError
from villacare.models import Booking, ProcessedMessage
from villacare.services import reference_codes
from villacare.services.reference_codes import (
    MAX_CODE_ATTEMPTS,
    REFERENCE_CODE_ALPHABET,
    generate_reference_code,
    insert_with_reference_code,
)


def test_generated_codes_avoid_lookalikes():
    for _ in range(50):
        code = generate_reference_code()
        assert len(code) == 4
        assert set(code) <= set(REFERENCE_CODE_ALPHABET)
        assert not set(code) & set("01ILO")


def test_taken_code_is_skipped(db, make_booking):
    existing = make_booking(short_code="AAAA")
    candidates = iter(["AAAA", "BBBB"])

    (booking,) = insert_with_reference_code(
        db,
        lambda code: [
            Booking(
                cleaner_id=existing.cleaner_id,
                owner_id=existing.owner_id,
                property_id=existing.property_id,
                service="Regular Clean",
                date=existing.date,
                short_code=code,
            )
        ],
        code_generator=lambda: next(candidates),
    )

    assert booking.short_code == "BBBB"
    assert db.query(Booking).count() == 2


def test_gives_up_after_max_attempts(db, make_booking):
    make_booking(short_code="AAAA")
    calls = []

    def always_taken():
        calls.append(1)
        return "AAAA"

    with pytest.raises(ConflictError):
        insert_with_reference_code(db, lambda code: [], code_generator=always_taken)

    assert len(calls) == MAX_CODE_ATTEMPTS


def test_collision_at_commit_retries(db, make_booking, monkeypatch):
    existing = make_booking(short_code="AAAA")
    candidates = iter(["AAAA", "CCCC"])
    # Simulate a concurrent writer taking the code between pre-check and commit
    checks = {"AAAA": [False, True]}
    real_is_code_taken = reference_codes.is_code_taken

    def racing_is_code_taken(session, code):
        if checks.get(code):
            return checks[code].pop(0)
        return real_is_code_taken(session, code)

    monkeypatch.setattr(reference_codes, "is_code_taken", racing_is_code_taken)

    (booking,) = insert_with_reference_code(
        db,
        lambda code: [
            Booking(
                cleaner_id=existing.cleaner_id,
                owner_id=existing.owner_id,
                property_id=existing.property_id,
                service="Regular Clean",
                date=existing.date,
                short_code=code,
            )
        ],
        code_generator=lambda: next(candidates),
    )

    assert booking.short_code == "CCCC"


def test_other_integrity_errors_propagate(db):
    db.add(ProcessedMessage(message_sid="SM1"))
    db.commit()

    with pytest.raises(IntegrityError):
        insert_with_reference_code(
            db, lambda code: [ProcessedMessage(message_sid="SM1")], code_generator=lambda: "ZZZZ"
        )
