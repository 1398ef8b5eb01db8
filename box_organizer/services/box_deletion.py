"""Box removal with QR code release.

The box's QR code goes back to ``generated`` before the box row is deleted,
within the same transaction, so a code never points at a missing box.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from box_organizer.database import retry_on_conflict, transaction
from box_organizer.services import boxes, qr_codes
from box_organizer.services.errors import NotFound

logger = logging.getLogger(__name__)


@retry_on_conflict
def delete_box(db: Session, box_id: int, workspace_id: int) -> Optional[int]:
    """
    Delete a box and release its QR code.

    Returns:
        Id of the released QR code, or None if the box had none

    Raises:
        NotFound: box missing or in another workspace
    """
    with transaction(db):
        box = boxes.find_box(db, box_id, workspace_id, lock=True)
        if box is None:
            raise NotFound("Box not found")

        released_id = None
        qr_code = box.qr_code
        if qr_code is not None:
            released_id = qr_code.id
            qr_codes.release(db, qr_code)
            db.flush()
            db.expire(box, ["qr_code"])

        db.delete(box)
        db.flush()

    logger.info("Deleted box %s in workspace %s (released QR code: %s)", box_id, workspace_id, released_id)
    return released_id
