"""Failure kinds raised by the circulation core.

Every error carries a displayable ``reason``. The web layer maps ``status_code``
onto the HTTP response; ``kind`` and ``code`` let clients tell failures apart.
"""

from fastapi import status


class CirculationError(Exception):
    """Base class for loan-affecting operation failures."""

    kind = "Error"
    code = "Error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self):
        return {"detail": self.reason, "kind": self.kind, "code": self.code}


class NotFoundError(CirculationError):
    kind = code = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(CirculationError):
    """The current state does not allow the transition."""

    kind = code = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class AlreadyReturnedError(ConflictError):
    code = "AlreadyReturned"


class NotActiveError(ConflictError):
    code = "NotActive"


class CopyUnavailableError(ConflictError):
    code = "CopyUnavailable"


class RenewalLimitExceededError(ConflictError):
    code = "RenewalLimitExceeded"


class MemberIneligibleError(ConflictError):
    code = "MemberIneligible"


class FineNotPendingError(ConflictError):
    code = "FineNotPending"


class ForbiddenError(CirculationError):
    kind = code = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(CirculationError):
    kind = code = "ValidationError"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidDueDateError(ValidationError):
    code = "InvalidDueDate"


class DependencyFailure(CirculationError):
    """A collaborator call failed or timed out; safe to retry."""

    kind = code = "DependencyFailure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
