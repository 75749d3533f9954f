from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Optional

from ..models import ActorRole, Reservation, ReservationStatus
from .calendar import SlotCalendar
from .errors import OutOfWindowError, QuotaExceededError, ValidationError

if TYPE_CHECKING:
    from .repositories import ReservationRepository


class AllocationMode(StrEnum):
    # Admin triage: requests start pending and a taken slot is a hard conflict.
    MODERATED = "moderated"
    # First come first served: free slots are booked at once, taken slots queue.
    WAITLIST = "waitlist"


@dataclass(frozen=True)
class BookingPolicy:
    mode: AllocationMode
    calendar: SlotCalendar
    daily_quota: int = 2
    horizon_days: int = 2
    timezone: str = "UTC"
    timeout_seconds: float = 5.0
    transient_retries: int = 2

    @property
    def blocking_statuses(self) -> frozenset[ReservationStatus]:
        return blocking_statuses(self.mode)

    @property
    def initial_status(self) -> ReservationStatus:
        if self.mode == AllocationMode.WAITLIST:
            return ReservationStatus.BOOKED
        return ReservationStatus.PENDING


def blocking_statuses(mode: AllocationMode) -> frozenset[ReservationStatus]:
    """Statuses that occupy a slot and block a new request for it."""
    if mode == AllocationMode.WAITLIST:
        return frozenset({ReservationStatus.ACCEPTED, ReservationStatus.BOOKED})
    return frozenset({ReservationStatus.PENDING, ReservationStatus.ACCEPTED, ReservationStatus.BOOKED})


async def find_active_conflict(
    res_repo: "ReservationRepository",
    *,
    mode: AllocationMode,
    hall_id: int,
    booking_date: date,
    period: int,
) -> Optional[Reservation]:
    """Return the reservation occupying the slot, if any.

    Only meaningful while the caller holds ``res_repo.lock_slot`` for the same key.
    """
    return await res_repo.find_occupant(
        hall_id=hall_id,
        booking_date=booking_date,
        period=period,
        statuses=blocking_statuses(mode),
    )


@dataclass(frozen=True)
class RequestSnapshot:
    requester_role: ActorRole
    booking_date: date
    today: date
    active_on_date: int


def validate_request(snapshot: RequestSnapshot, *, policy: BookingPolicy) -> None:
    """
    Pure validation of the requester-level policy: booking window, then daily quota.
    Administrators are exempt from both. Raises domain errors on violation.
    """
    if snapshot.requester_role == ActorRole.ADMIN:
        return
    last_day = snapshot.today + timedelta(days=policy.horizon_days)
    if snapshot.booking_date < snapshot.today or snapshot.booking_date > last_day:
        raise OutOfWindowError(
            f"{snapshot.booking_date.isoformat()} is outside the booking window "
            f"{snapshot.today.isoformat()}..{last_day.isoformat()}"
        )
    if snapshot.active_on_date >= policy.daily_quota:
        raise QuotaExceededError(
            f"daily limit of {policy.daily_quota} reservations reached for {snapshot.booking_date.isoformat()}"
        )


def parse_booking_date(value: date | str) -> date:
    if isinstance(value, datetime):
        raise ValidationError("booking date must not carry a time of day")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"malformed date {value!r}, expected YYYY-MM-DD") from exc
    raise ValidationError(f"malformed date {value!r}, expected YYYY-MM-DD")


def parse_role(value: ActorRole | str) -> ActorRole:
    try:
        role = ActorRole(value)
    except ValueError as exc:
        raise ValidationError(f"unknown role {value!r}") from exc
    if role == ActorRole.SYSTEM:
        raise ValidationError("role 'system' is reserved for the allocation engine")
    return role


def require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} must not be empty")
    return value.strip()
