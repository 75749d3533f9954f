from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.calendar import PeriodRange, SlotCalendar
from .models import Hall, Reservation, ReservationStatus


class HallCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    capacity: int = Field(ge=1)
    location: Optional[str] = Field(default=None, max_length=255)
    features: List[str] = Field(default_factory=list)


class HallRead(BaseModel):
    hall_id: int
    name: str
    capacity: int
    location: Optional[str]
    features: List[str]

    @classmethod
    def from_db(cls, *, hall: Hall) -> "HallRead":
        return cls(
            hall_id=hall.id,
            name=hall.name,
            capacity=hall.capacity,
            location=hall.location,
            features=list(hall.features),
        )


class ReservationCreate(BaseModel):
    hall_id: int = Field(ge=1)
    booking_date: date
    period: int
    reason: str = Field(max_length=500)


class ReservationTransition(BaseModel):
    status: ReservationStatus
    rejection_reason: Optional[str] = Field(default=None, max_length=500)


class ReservationRead(BaseModel):
    reservation_id: int
    hall_id: int
    requester_id: int
    booking_date: date
    period: int
    period_start: time
    period_end: time
    reason: str
    status: ReservationStatus
    rejection_reason: Optional[str]
    version: int
    created_at: datetime
    updated_at: datetime

    @field_serializer("period_start", "period_end")
    def _ser_time(self, value: time) -> str:
        return value.strftime("%H:%M")

    @classmethod
    def from_db(cls, *, reservation: Reservation, calendar: SlotCalendar) -> "ReservationRead":
        period_range = calendar.describe(reservation.period)
        return cls(
            reservation_id=reservation.id,
            hall_id=reservation.hall_id,
            requester_id=reservation.requester_id,
            booking_date=reservation.booking_date,
            period=reservation.period,
            period_start=period_range.start,
            period_end=period_range.end,
            reason=reservation.reason,
            status=reservation.status,
            rejection_reason=reservation.rejection_reason,
            version=reservation.version,
            created_at=reservation.created_at,
            updated_at=reservation.updated_at,
        )


class WaitlistPosition(BaseModel):
    reservation_id: int
    position: int


class PeriodAvailability(BaseModel):
    period: int
    label: str
    free: bool
    occupant_reservation_id: Optional[int]
    occupant_status: Optional[ReservationStatus]
    waitlist: int

    @classmethod
    def from_entry(
        cls,
        *,
        period: int,
        period_range: PeriodRange,
        occupant: Optional[Reservation],
        waitlist: int,
    ) -> "PeriodAvailability":
        return cls(
            period=period,
            label=period_range.label,
            free=occupant is None,
            occupant_reservation_id=occupant.id if occupant is not None else None,
            occupant_status=occupant.status if occupant is not None else None,
            waitlist=waitlist,
        )
