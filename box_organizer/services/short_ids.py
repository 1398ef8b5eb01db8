"""Short id generation for boxes and QR codes.

Candidates are random; uniqueness is checked against the table and a bounded
number of collisions is tolerated before giving up with ``ShortIdExhausted``.
"""
import logging
import re
import secrets
import string
from typing import Callable, Collection

from sqlalchemy.orm import Session

from box_organizer.config import settings
from box_organizer.services.errors import ShortIdExhausted

logger = logging.getLogger(__name__)

BOX_ALPHABET = string.ascii_letters + string.digits
BOX_SHORT_ID_LENGTH = 10

QR_PREFIX = "QR-"
QR_ALPHABET = string.ascii_uppercase + string.digits
QR_SHORT_ID_LENGTH = 6
QR_SHORT_ID_PATTERN = re.compile(r"^QR-[A-Z0-9]{6}$")


def random_code(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def new_box_short_id() -> str:
    """Candidate box id, e.g. ``aZ3kP9xQ1m``."""
    return random_code(BOX_ALPHABET, BOX_SHORT_ID_LENGTH)


def new_qr_short_id() -> str:
    """Candidate QR id, e.g. ``QR-A1B2C3``."""
    return QR_PREFIX + random_code(QR_ALPHABET, QR_SHORT_ID_LENGTH)


def unique_short_id(
    db: Session,
    model,
    candidate: Callable[[], str],
    reserved: Collection[str] = (),
) -> str:
    """
    Draw candidates until one is free in ``model.short_id``.

    Args:
        db: Database session
        model: Mapped class with a ``short_id`` column
        candidate: Generator of candidate ids
        reserved: Ids already handed out in the current transaction

    Returns:
        A short id not present in the table or in ``reserved``

    Raises:
        ShortIdExhausted: no free id within SHORT_ID_MAX_ATTEMPTS draws
    """
    attempts = settings.SHORT_ID_MAX_ATTEMPTS
    for _ in range(attempts):
        short_id = candidate()
        if short_id in reserved:
            continue
        taken = db.query(model.id).filter(model.short_id == short_id).first()
        if taken is None:
            return short_id
    logger.error(
        "No free short id for %s after %d attempts", model.__tablename__, attempts
    )
    raise ShortIdExhausted()
