"""Translation of service exceptions into HTTP errors."""

from fastapi import HTTPException, status

from ..services.exceptions import ConflictError, NotFoundError, TrackerError


def to_http_exception(error: TrackerError) -> HTTPException:
    """Map a service exception onto its HTTP status, keeping the message.

    NotFoundError -> 404, ConflictError -> 409, anything else
    (ValidationError and its subclasses) -> 400.
    """
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))
