"""Box operations: create, read, search and update.

Boxes are removed through ``box_deletion`` so that their QR code is released
in the same transaction.
"""
import logging
from typing import List, Optional

from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from box_organizer.database import retry_on_conflict, transaction
from box_organizer.models.box import Box
from box_organizer.models.location import Location
from box_organizer.schemas.box import BoxCreate, BoxQuery, BoxUpdate, DuplicateCheck
from box_organizer.services import locations, qr_codes, short_ids
from box_organizer.services.errors import AlreadyAssigned, NotFound, TransactionConflict

logger = logging.getLogger(__name__)


def find_box(
    db: Session,
    box_id: int,
    workspace_id: int,
    lock: bool = False,
) -> Optional[Box]:
    query = db.query(Box).filter(Box.id == box_id, Box.workspace_id == workspace_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def resolve_location(db: Session, location_id: int, workspace_id: int) -> Location:
    """
    Live location a box may be placed in; NotFound otherwise.

    The row is locked so a concurrent delete cannot detach boxes from it
    before the caller commits the placement.
    """
    location = locations.find_location(db, location_id, workspace_id, lock=True)
    if location is None:
        raise NotFound("Location not found")
    return location


def get_box(db: Session, box_id: int, workspace_id: int) -> Box:
    box = find_box(db, box_id, workspace_id)
    if box is None:
        raise NotFound("Box not found")
    return box


@retry_on_conflict
def create_box(db: Session, workspace_id: int, data: BoxCreate) -> Box:
    """
    Create a box, optionally placing it and attaching a QR code.

    The QR code is claimed in the same transaction as the insert, so a failed
    claim leaves no box behind.

    Raises:
        NotFound: location or QR code missing from the workspace
        AlreadyAssigned: the QR code is on another box
        ShortIdExhausted: no free box short id could be found
        TransactionConflict: a concurrent insert took the drawn short id
    """
    try:
        with transaction(db):
            if data.location_id is not None:
                resolve_location(db, data.location_id, workspace_id)

            box = Box(
                workspace_id=workspace_id,
                short_id=short_ids.unique_short_id(db, Box, short_ids.new_box_short_id),
                name=data.name,
                description=data.description,
                tags=data.tags,
                location_id=data.location_id,
            )
            db.add(box)
            db.flush()

            if data.qr_code_id is not None:
                qr_codes.bind(db, data.qr_code_id, box, workspace_id)
    except IntegrityError as exc:
        # Unique short_id: another insert won the race for the drawn id
        logger.warning("Box short id taken concurrently in workspace %s", workspace_id)
        raise TransactionConflict() from exc

    logger.info("Created box %s (%s) in workspace %s", box.id, box.short_id, workspace_id)
    return box


@retry_on_conflict
def update_box(db: Session, box_id: int, workspace_id: int, data: BoxUpdate) -> Box:
    """
    Apply a partial update to a box.

    Setting ``qr_code_id`` to a different code releases the current one and
    claims the new one; setting it to null only releases.

    Raises:
        NotFound: box, location or QR code missing from the workspace
        AlreadyAssigned: the new QR code is on another box
    """
    update_data = data.model_dump(exclude_unset=True)
    qr_code_requested = "qr_code_id" in update_data
    new_qr_code_id = update_data.pop("qr_code_id", None)

    try:
        with transaction(db):
            box = find_box(db, box_id, workspace_id, lock=True)
            if box is None:
                raise NotFound("Box not found")

            if update_data.get("location_id") is not None:
                resolve_location(db, update_data["location_id"], workspace_id)
            if update_data.get("name") is None:
                update_data.pop("name", None)
            if "tags" in update_data and update_data["tags"] is None:
                update_data["tags"] = []

            for field, value in update_data.items():
                setattr(box, field, value)

            if qr_code_requested:
                current = box.qr_code
                if current is not None and current.id != new_qr_code_id:
                    qr_codes.release(db, current)
                    db.flush()
                    db.expire(box, ["qr_code"])
                    logger.info("Released QR code %s from box %s", current.id, box_id)
                if new_qr_code_id is not None:
                    qr_codes.bind(db, new_qr_code_id, box, workspace_id)
            db.flush()
    except IntegrityError as exc:
        logger.warning("Concurrent QR assignment to box %s", box_id)
        raise AlreadyAssigned("Box already has a QR code") from exc

    logger.info("Updated box %s: %s", box_id, sorted(data.model_fields_set))
    return box


def list_boxes(db: Session, workspace_id: int, query: BoxQuery) -> List[Box]:
    """Boxes of a workspace, newest first, with optional search and filters."""
    boxes = db.query(Box).filter(Box.workspace_id == workspace_id)

    if query.q:
        search_term = f"%{query.q}%"
        boxes = boxes.filter(
            or_(
                Box.name.ilike(search_term),
                Box.description.ilike(search_term),
                cast(Box.tags, String).ilike(search_term),
            )
        )

    if query.location_id is not None:
        boxes = boxes.filter(Box.location_id == query.location_id)

    if query.is_assigned is True:
        boxes = boxes.filter(Box.location_id != None)
    elif query.is_assigned is False:
        boxes = boxes.filter(Box.location_id == None)

    return (
        boxes.order_by(Box.created_at.desc(), Box.id.desc())
        .offset(query.offset)
        .limit(query.limit)
        .all()
    )


def check_duplicate_name(
    db: Session,
    workspace_id: int,
    name: str,
    exclude_box_id: Optional[int] = None,
) -> DuplicateCheck:
    """Count other boxes of the workspace with the same name, ignoring case."""
    query = db.query(func.count(Box.id)).filter(
        Box.workspace_id == workspace_id,
        func.lower(Box.name) == name.strip().lower(),
    )
    if exclude_box_id is not None:
        query = query.filter(Box.id != exclude_box_id)
    count = query.scalar()
    return DuplicateCheck(is_duplicate=count > 0, count=count)
