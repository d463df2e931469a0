"""
Short booking reference codes

Cleaners type these into WhatsApp ("ACCEPT 7KQ3"), so they are short and
avoid look-alike characters (0/O, 1/I/L). All bookings share one namespace,
enforced by the unique index on bookings.short_code.
"""

import logging
import secrets
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import ConflictError
from ..models import Booking

logger = logging.getLogger(__name__)

REFERENCE_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
REFERENCE_CODE_LENGTH = 4
MAX_CODE_ATTEMPTS = 10


def generate_reference_code(length: int = REFERENCE_CODE_LENGTH) -> str:
    return "".join(secrets.choice(REFERENCE_CODE_ALPHABET) for _ in range(length))


def is_code_taken(db: Session, code: str) -> bool:
    return db.query(Booking.id).filter(Booking.short_code == code).first() is not None


def insert_with_reference_code(
    db: Session,
    build: Callable[[str], list],
    code_generator: Optional[Callable[[], str]] = None,
) -> list:
    """
    Build rows around a fresh reference code and commit them.

    ``build`` receives the candidate code and returns the objects to add. The
    pre-check skips codes that are visibly taken; the unique index settles
    races with concurrent writers, in which case the transaction is rolled
    back and retried with a new code. The session must have no other pending
    changes, since a collision rolls back the whole transaction.

    Returns:
        The committed objects

    Raises:
        ConflictError: If no free code was found within MAX_CODE_ATTEMPTS
    """
    code_generator = code_generator or generate_reference_code

    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        code = code_generator()
        if is_code_taken(db, code):
            logger.debug(f"Reference code {code} already taken (attempt {attempt})")
            continue

        objects = build(code)
        db.add_all(objects)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if not is_code_taken(db, code):
                # The violation came from another constraint, not the code
                raise
            logger.warning(f"⚠️ Reference code collision on {code}, retrying (attempt {attempt})")
            continue

        return objects

    raise ConflictError(f"Could not allocate a unique reference code in {MAX_CODE_ATTEMPTS} attempts")
