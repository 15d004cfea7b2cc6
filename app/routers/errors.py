"""Translate progress errors into HTTP errors."""
from fastapi import HTTPException, status

from app.exceptions import (
    ConflictError,
    GoalNotFoundError,
    PersistenceError,
    ProgressError,
    StaleStateError,
    ValidationError,
)


STATUS_BY_ERROR = [
    (GoalNotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StaleStateError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_exception(error: ProgressError) -> HTTPException:
    """Map a progress error to the HTTPException returned to the caller."""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
