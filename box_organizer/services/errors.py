"""Error taxonomy for location, box and QR code operations.

Every error carries an HTTP-style ``status_code`` so that a request layer can
translate it without inspecting messages. Messages never include data from
other workspaces.
"""
from typing import Optional


class OrganizerError(Exception):
    """Base class for all domain errors raised by the services."""

    status_code = 500
    message = "Operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class NotFound(OrganizerError):
    """Location, box or QR code is missing, soft-deleted or in another workspace."""

    status_code = 404
    message = "Resource not found"


class ParentNotFound(NotFound):
    """Parent location is missing, soft-deleted or in another workspace."""

    message = "Parent location not found"


class MaxDepthExceeded(OrganizerError):
    status_code = 400
    message = "Maximum location depth exceeded"


class SiblingConflict(OrganizerError):
    status_code = 409
    message = "A location with this name already exists at this level"


class AlreadyAssigned(OrganizerError):
    status_code = 409
    message = "QR code is already assigned to another box"


class InvalidStatusTransition(OrganizerError):
    """QR code is not in a state that allows the requested transition."""

    status_code = 409
    message = "QR code status does not allow this operation"


class ShortIdExhausted(OrganizerError):
    """No free short id was found within the retry budget.

    This points at an exhausted id space or a broken generator, so it is an
    operational alert rather than a user error.
    """

    status_code = 500
    message = "Could not generate a unique short id"


class TransactionConflict(OrganizerError):
    """A concurrent modification aborted the transaction."""

    status_code = 503
    message = "Concurrent modification, please retry"
