from __future__ import annotations

from datetime import date, datetime
from typing import AsyncContextManager, Collection, Protocol

from ..models import Hall, Reservation, ReservationStatus


class HallRepository(Protocol):
    async def get(self, hall_id: int) -> Hall | None: ...

    async def get_for_update(self, hall_id: int) -> Hall | None:
        """Fresh read of the hall row, locked until the transaction ends."""
        ...

    async def create(
        self,
        *,
        name: str,
        capacity: int,
        location: str | None,
        features: list[str],
    ) -> Hall: ...

    async def list_active(self) -> list[Hall]: ...

    async def mark_deleted(self, hall: Hall, *, now: datetime) -> Hall: ...


class ReservationRepository(Protocol):
    def lock_slot(self, hall_id: int, booking_date: date, period: int) -> AsyncContextManager[None]:
        """Serialize every write touching the (hall, date, period) key."""
        ...

    def lock_requester_day(self, requester_id: int, booking_date: date) -> AsyncContextManager[None]:
        """Serialize quota checks for one requester on one date. Taken before lock_slot."""
        ...

    async def find_occupant(
        self,
        *,
        hall_id: int,
        booking_date: date,
        period: int,
        statuses: Collection[ReservationStatus],
    ) -> Reservation | None: ...

    async def count_for_requester(
        self,
        *,
        requester_id: int,
        booking_date: date,
        statuses: Collection[ReservationStatus],
    ) -> int: ...

    async def create(
        self,
        *,
        hall_id: int,
        requester_id: int,
        booking_date: date,
        period: int,
        reason: str,
        status: ReservationStatus,
    ) -> Reservation: ...

    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def list(
        self,
        *,
        hall_id: int | None = None,
        requester_id: int | None = None,
        status: ReservationStatus | None = None,
        booking_date: date | None = None,
    ) -> list[Reservation]: ...

    async def list_waitlist(self, *, hall_id: int, booking_date: date, period: int) -> list[Reservation]:
        """Waitlisted reservations for the key, oldest arrival first, ties by id."""
        ...

    async def save(self, reservation: Reservation) -> Reservation: ...


class UnitOfWork(Protocol):
    halls: HallRepository
    reservations: ReservationRepository

    def transaction(self) -> AsyncContextManager[None]:
        """Commit on clean exit, roll back on error."""
        ...
