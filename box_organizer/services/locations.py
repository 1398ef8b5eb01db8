"""Location tree operations: create, rename, list and look up nodes.

Soft deletion lives in ``location_lifecycle`` because it also touches boxes.
"""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from box_organizer.database import retry_on_conflict, transaction
from box_organizer.models.location import Location
from box_organizer.schemas.location import LocationCreate, LocationUpdate
from box_organizer.services import paths
from box_organizer.services.errors import NotFound, ParentNotFound, SiblingConflict

logger = logging.getLogger(__name__)


# ============================================================================
# Helper Functions
# ============================================================================

def live_locations(db: Session, workspace_id: int) -> Query:
    """Query over the non-deleted locations of a workspace."""
    return db.query(Location).filter(
        Location.workspace_id == workspace_id,
        Location.is_deleted == False,
    )


def find_location(
    db: Session,
    location_id: int,
    workspace_id: int,
    lock: bool = False,
) -> Optional[Location]:
    """Live location by id within the workspace, optionally row-locked."""
    query = live_locations(db, workspace_id).filter(Location.id == location_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def path_taken(db: Session, workspace_id: int, path: str) -> bool:
    """Whether a live location of the workspace already uses ``path``."""
    return live_locations(db, workspace_id).filter(Location.path == path).first() is not None


def subtree_query(db: Session, workspace_id: int, path: str) -> Query:
    """All rows below ``path``, deleted ones included."""
    return db.query(Location).filter(
        Location.workspace_id == workspace_id,
        Location.path.startswith(paths.descendant_prefix(path), autoescape=True),
    )


def _rebase_subtree(db: Session, workspace_id: int, old_path: str, new_path: str) -> int:
    """Move every descendant of ``old_path`` under ``new_path``; returns the count."""
    descendants = (
        subtree_query(db, workspace_id, old_path)
        .order_by(Location.id)
        .with_for_update()
        .all()
    )
    for descendant in descendants:
        descendant.path = paths.rebase(descendant.path, old_path, new_path)
    return len(descendants)


# ============================================================================
# Operations
# ============================================================================

def get_location(db: Session, location_id: int, workspace_id: int) -> Location:
    location = find_location(db, location_id, workspace_id)
    if location is None:
        raise NotFound("Location not found")
    return location


@retry_on_conflict
def create_location(db: Session, workspace_id: int, data: LocationCreate) -> Location:
    """
    Create a location, as a root node or under ``data.parent_id``.

    The parent lookup, the path check and the insert share one transaction;
    a unique index violation from a concurrent insert of the same path is
    reported as a sibling conflict too.

    Raises:
        ParentNotFound: parent missing, deleted or in another workspace
        MaxDepthExceeded: the new node would be deeper than allowed
        SiblingConflict: a live node already has the resulting path
    """
    try:
        with transaction(db):
            parent_path = None
            if data.parent_id is not None:
                parent = find_location(db, data.parent_id, workspace_id, lock=True)
                if parent is None:
                    raise ParentNotFound()
                parent_path = parent.path

            path = paths.compose(parent_path, paths.normalize(data.name))
            if path_taken(db, workspace_id, path):
                logger.info("Location path %s already exists in workspace %s", path, workspace_id)
                raise SiblingConflict()

            location = Location(
                workspace_id=workspace_id,
                path=path,
                name=data.name,
                description=data.description,
            )
            db.add(location)
            db.flush()
    except IntegrityError as exc:
        logger.warning("Concurrent insert of location path in workspace %s", workspace_id)
        raise SiblingConflict() from exc

    logger.info("Created location %s (%s) in workspace %s", location.id, location.path, workspace_id)
    return location


@retry_on_conflict
def rename_location(
    db: Session,
    location_id: int,
    workspace_id: int,
    data: LocationUpdate,
) -> Location:
    """
    Rename a location and/or change its description.

    A new name replaces only the last path segment; the node stays under its
    current parent. When the path changes, every descendant's path prefix is
    rewritten in the same transaction while the subtree rows are locked, so
    no reader can see a half-moved tree.

    Raises:
        NotFound: location missing, deleted or in another workspace
        SiblingConflict: the new path is taken by a live node
    """
    try:
        with transaction(db):
            location = find_location(db, location_id, workspace_id, lock=True)
            if location is None:
                raise NotFound("Location not found")

            if data.name is not None and data.name != location.name:
                old_path = location.path
                new_path = paths.compose(location.parent_path, paths.normalize(data.name))
                if new_path != old_path:
                    if path_taken(db, workspace_id, new_path):
                        logger.info(
                            "Rename of location %s blocked: %s already exists", location_id, new_path
                        )
                        raise SiblingConflict()
                    moved = _rebase_subtree(db, workspace_id, old_path, new_path)
                    location.path = new_path
                    logger.info(
                        "Location %s moved from %s to %s with %d descendants",
                        location_id, old_path, new_path, moved,
                    )
                location.name = data.name

            if "description" in data.model_fields_set:
                location.description = data.description
            db.flush()
    except IntegrityError as exc:
        # A descendant landed on a path held by a live node
        logger.warning("Rename of location %s collided with an existing path", location_id)
        raise SiblingConflict() from exc

    return location


def list_children(
    db: Session,
    workspace_id: int,
    parent_id: Optional[int] = None,
) -> List[Location]:
    """
    Direct live children of a location, or the root nodes when no parent is given.

    Ordered by name, ignoring case.

    Raises:
        ParentNotFound: parent missing, deleted or in another workspace
    """
    query = live_locations(db, workspace_id)
    if parent_id is None:
        query = query.filter(~Location.path.contains(paths.SEPARATOR))
        depth = 1
    else:
        parent = find_location(db, parent_id, workspace_id)
        if parent is None:
            raise ParentNotFound()
        query = query.filter(
            Location.path.startswith(paths.descendant_prefix(parent.path), autoescape=True)
        )
        depth = parent.depth + 1

    rows = query.order_by(func.lower(Location.name), Location.name, Location.id).all()
    return [location for location in rows if location.depth == depth]


def get_breadcrumbs(db: Session, location: Location) -> List[Location]:
    """Live ancestors of ``location`` followed by the location itself, root first."""
    segments = paths.segments_of(location.path)
    prefixes = [paths.SEPARATOR.join(segments[:i]) for i in range(1, len(segments) + 1)]
    chain = live_locations(db, location.workspace_id).filter(Location.path.in_(prefixes)).all()
    return sorted(chain, key=lambda node: node.depth)
