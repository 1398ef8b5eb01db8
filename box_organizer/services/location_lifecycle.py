"""Soft deletion of locations.

Deleting a location marks the node as deleted and detaches every box placed
in it, in one transaction. Boxes and QR codes are never removed here, and the
node's descendants are left as they are.
"""
import logging

from sqlalchemy.orm import Session

from box_organizer.database import retry_on_conflict, transaction
from box_organizer.models.box import Box
from box_organizer.models.location import Location
from box_organizer.services import locations
from box_organizer.services.errors import NotFound

logger = logging.getLogger(__name__)


def _mark_deleted(db: Session, location: Location) -> None:
    location.is_deleted = True
    db.flush()


def _detach_boxes(db: Session, location_id: int) -> int:
    return (
        db.query(Box)
        .filter(Box.location_id == location_id)
        .update({Box.location_id: None}, synchronize_session="fetch")
    )


@retry_on_conflict
def delete_location(db: Session, location_id: int, workspace_id: int) -> int:
    """
    Soft-delete a location and unplace its boxes.

    Returns:
        Number of boxes whose location was cleared

    Raises:
        NotFound: location missing, already deleted or in another workspace
    """
    with transaction(db):
        location = locations.find_location(db, location_id, workspace_id, lock=True)
        if location is None:
            raise NotFound("Location not found")
        _mark_deleted(db, location)
        detached = _detach_boxes(db, location_id)

    logger.info(
        "Deleted location %s in workspace %s, %d boxes unassigned",
        location_id, workspace_id, detached,
    )
    return detached
