from typing import Any

from fastapi import HTTPException, status

from ..domain.errors import (
    BookingError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    OutOfWindowError,
    QuotaExceededError,
    TransientError,
    ValidationError,
)

# Checked in order; subclasses before their bases.
_STATUS_BY_ERROR: list[tuple[type[BookingError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (QuotaExceededError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (OutOfWindowError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: BookingError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http(exc: BookingError) -> HTTPException:
    detail: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    headers = None
    if isinstance(exc, ConflictError) and exc.occupying_id is not None:
        detail["conflicting_reservation_id"] = exc.occupying_id
    if isinstance(exc, InvalidTransitionError):
        detail["current_status"] = exc.current
        detail["requested_status"] = exc.requested
    if isinstance(exc, TransientError):
        headers = {"Retry-After": "1"}
    return HTTPException(status_code=status_for(exc), detail=detail, headers=headers)
