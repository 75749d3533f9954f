from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..models import Reservation


class BookingError(Exception):
    """Base class for every failure the booking core reports to callers."""

    code = "booking_error"


class ValidationError(BookingError):
    code = "validation_error"


class OutOfRangeError(ValidationError):
    code = "period_out_of_range"


class NotFoundError(BookingError):
    code = "not_found"


class ForbiddenError(BookingError):
    code = "forbidden"


class ConflictError(BookingError):
    code = "slot_conflict"

    def __init__(self, message: str, *, occupying: Optional["Reservation"] = None) -> None:
        super().__init__(message)
        self.occupying = occupying

    @property
    def occupying_id(self) -> Optional[int]:
        return self.occupying.id if self.occupying is not None else None


class QuotaExceededError(BookingError):
    code = "quota_exceeded"


class OutOfWindowError(BookingError):
    code = "out_of_window"


class InvalidTransitionError(BookingError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"cannot transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class TransientError(BookingError):
    """Storage timeout or unavailability; safe to retry."""

    code = "transient"
