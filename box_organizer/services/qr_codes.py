"""QR code lifecycle: batch generation, assignment, release and printing.

Status transitions::

    generated --assign--> assigned --mark_printed--> printed
        ^                     |                          |
        +------unassign-------+--------------------------+

A code is linked to at most one box (``qr_codes.box_id`` is unique) and a
linked code is always ``assigned`` or ``printed``.
"""
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from box_organizer.config import settings
from box_organizer.database import retry_on_conflict, transaction
from box_organizer.models.box import Box
from box_organizer.models.qr_code import QrCode, QrStatus
from box_organizer.schemas.box import BoxSummary
from box_organizer.schemas.location import LocationSummary
from box_organizer.schemas.qr_code import QrCodeResponse
from box_organizer.schemas.scan import QrCodeScan
from box_organizer.services import locations, short_ids
from box_organizer.services.errors import AlreadyAssigned, InvalidStatusTransition, NotFound

logger = logging.getLogger(__name__)


def find_qr_code(
    db: Session,
    qr_code_id: int,
    workspace_id: int,
    lock: bool = False,
) -> Optional[QrCode]:
    query = db.query(QrCode).filter(
        QrCode.id == qr_code_id,
        QrCode.workspace_id == workspace_id,
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def bind(db: Session, qr_code_id: int, box: Box, workspace_id: int) -> QrCode:
    """
    Link a QR code to ``box`` inside the caller's transaction.

    The link is claimed with a single conditional UPDATE that only matches a
    free ``generated`` code, so of two concurrent claims exactly one wins.

    Raises:
        NotFound: no such code in the workspace
        AlreadyAssigned: the code is on another box, or the box has another code
    """
    current = box.qr_code
    if current is not None and current.id != qr_code_id:
        logger.info("Box %s already carries QR code %s", box.id, current.id)
        raise AlreadyAssigned("Box already has a QR code")

    claimed = (
        db.query(QrCode)
        .filter(
            QrCode.id == qr_code_id,
            QrCode.workspace_id == workspace_id,
            QrCode.status == QrStatus.generated,
            QrCode.box_id == None,
        )
        .update(
            {QrCode.box_id: box.id, QrCode.status: QrStatus.assigned},
            synchronize_session="fetch",
        )
    )

    qr_code = find_qr_code(db, qr_code_id, workspace_id)
    if qr_code is None:
        raise NotFound("QR code not found")
    if not claimed and qr_code.box_id != box.id:
        logger.info("QR code %s is already assigned to box %s", qr_code_id, qr_code.box_id)
        raise AlreadyAssigned()
    return qr_code


def release(db: Session, qr_code: QrCode) -> None:
    """Unlink a code from its box and make it reusable."""
    qr_code.box_id = None
    qr_code.status = QrStatus.generated


# ============================================================================
# Operations
# ============================================================================

@retry_on_conflict
def generate_batch(db: Session, workspace_id: int, quantity: int) -> List[QrCode]:
    """
    Create ``quantity`` new codes in ``generated`` state.

    Raises:
        ValueError: quantity outside 1..QR_BATCH_MAX
        ShortIdExhausted: no free short id could be found for a code
    """
    if not 1 <= quantity <= settings.QR_BATCH_MAX:
        raise ValueError(f"Quantity must be between 1 and {settings.QR_BATCH_MAX}")

    with transaction(db):
        issued = set()
        codes = []
        for _ in range(quantity):
            short_id = short_ids.unique_short_id(
                db, QrCode, short_ids.new_qr_short_id, reserved=issued
            )
            issued.add(short_id)
            codes.append(
                QrCode(workspace_id=workspace_id, short_id=short_id, status=QrStatus.generated)
            )
        db.add_all(codes)

    logger.info("Generated %d QR codes in workspace %s", quantity, workspace_id)
    return codes


@retry_on_conflict
def assign(db: Session, qr_code_id: int, box_id: int, workspace_id: int) -> QrCode:
    """
    Link a ``generated`` code to a box.

    Assigning a code to the box it is already on is a no-op.

    Raises:
        NotFound: code or box missing from the workspace
        AlreadyAssigned: code on another box, or box already labeled
    """
    try:
        with transaction(db):
            box = (
                db.query(Box)
                .filter(Box.id == box_id, Box.workspace_id == workspace_id)
                .first()
            )
            if box is None:
                raise NotFound("Box not found")
            qr_code = bind(db, qr_code_id, box, workspace_id)
    except IntegrityError as exc:
        # Unique box_id: another code reached this box first
        logger.warning("Concurrent QR assignment to box %s", box_id)
        raise AlreadyAssigned("Box already has a QR code") from exc

    logger.info("Assigned QR code %s to box %s", qr_code_id, box_id)
    return qr_code


@retry_on_conflict
def unassign(db: Session, qr_code_id: int, workspace_id: int) -> QrCode:
    """
    Release a code from its box.

    Raises:
        NotFound: no such code in the workspace
        InvalidStatusTransition: the code is not linked to a box
    """
    with transaction(db):
        qr_code = find_qr_code(db, qr_code_id, workspace_id, lock=True)
        if qr_code is None:
            raise NotFound("QR code not found")
        if qr_code.status not in (QrStatus.assigned, QrStatus.printed):
            raise InvalidStatusTransition("QR code is not assigned to a box")
        box_id = qr_code.box_id
        release(db, qr_code)

    logger.info("Released QR code %s from box %s", qr_code_id, box_id)
    return qr_code


@retry_on_conflict
def mark_printed(db: Session, qr_code_id: int, workspace_id: int) -> QrCode:
    """
    Record that the label of an assigned code has been printed.

    Raises:
        NotFound: no such code in the workspace
        InvalidStatusTransition: the code is not in ``assigned`` state
    """
    with transaction(db):
        qr_code = find_qr_code(db, qr_code_id, workspace_id, lock=True)
        if qr_code is None:
            raise NotFound("QR code not found")
        if qr_code.status != QrStatus.assigned:
            raise InvalidStatusTransition("Only assigned QR codes can be marked as printed")
        qr_code.status = QrStatus.printed

    logger.info("QR code %s marked as printed", qr_code_id)
    return qr_code


def list_qr_codes(
    db: Session,
    workspace_id: int,
    status: Optional[QrStatus] = None,
) -> List[QrCode]:
    """Codes of a workspace, newest first, optionally filtered by status."""
    query = db.query(QrCode).filter(QrCode.workspace_id == workspace_id)
    if status is not None:
        query = query.filter(QrCode.status == status)
    return query.order_by(QrCode.created_at.desc(), QrCode.id.desc()).all()


def get_by_short_id(db: Session, short_id: str, workspace_id: int) -> QrCodeScan:
    """
    Resolve a scanned label to its code, box and box location.

    Raises:
        ValueError: ``short_id`` is not of the form QR-XXXXXX
        NotFound: no such code in the workspace
    """
    if not short_ids.QR_SHORT_ID_PATTERN.match(short_id):
        raise ValueError("Invalid QR code format, expected QR-XXXXXX")

    qr_code = (
        db.query(QrCode)
        .filter(QrCode.short_id == short_id, QrCode.workspace_id == workspace_id)
        .first()
    )
    if qr_code is None:
        logger.info("Scanned QR code %s not found in workspace %s", short_id, workspace_id)
        raise NotFound("QR code not found")

    scan = QrCodeScan(qr_code=QrCodeResponse.model_validate(qr_code))
    box = qr_code.box
    if box is not None:
        scan.box = BoxSummary.model_validate(box)
        if box.location is not None and not box.location.is_deleted:
            scan.location = LocationSummary.model_validate(box.location)
            scan.breadcrumbs = [
                LocationSummary.model_validate(node)
                for node in locations.get_breadcrumbs(db, box.location)
            ]
    return scan
