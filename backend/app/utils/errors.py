from typing import Dict, Optional
from fastapi import HTTPException, status
import logging

logger = logging.getLogger(__name__)


def error_response(
    message: str,
    field_errors: Dict[str, str],
    code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
) -> HTTPException:
    """Return an HTTPException with a consistent structure and log details."""
    logger.error("%s %s", message, field_errors)
    detail = {"message": message, "field_errors": field_errors}
    return HTTPException(status_code=code, detail=detail)


class DisputeError(Exception):
    """Base class for errors reported synchronously to dispute callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "dispute_error"

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.field_errors = field_errors or {}


class NotFound(DisputeError):
    """Unknown ticket, or a caller with no relationship to it.

    Both cases render identically so a stranger cannot probe for ticket ids.
    """

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Forbidden(DisputeError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class InvalidTransition(DisputeError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class Conflict(DisputeError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class ValidationError(DisputeError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"


class AttachmentUploadError(Exception):
    """A single attachment could not be stored."""


class ImmutableRecordError(Exception):
    """Raised when code tries to rewrite or delete audit records."""
