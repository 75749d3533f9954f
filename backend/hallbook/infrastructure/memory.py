from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import AsyncIterator, Collection

from ..domain.calendar import SlotKey
from ..domain.repositories import HallRepository, ReservationRepository, UnitOfWork
from ..models import Hall, Reservation, ReservationStatus
from ..utils.time import utc_now_naive


def _copy_hall(hall: Hall) -> Hall:
    return Hall(
        id=hall.id,
        name=hall.name,
        capacity=hall.capacity,
        location=hall.location,
        features=list(hall.features),
        created_at=hall.created_at,
        updated_at=hall.updated_at,
        deleted_at=hall.deleted_at,
    )


def _copy_reservation(reservation: Reservation) -> Reservation:
    return Reservation(
        id=reservation.id,
        hall_id=reservation.hall_id,
        requester_id=reservation.requester_id,
        booking_date=reservation.booking_date,
        period=reservation.period,
        reason=reservation.reason,
        status=reservation.status,
        rejection_reason=reservation.rejection_reason,
        version=reservation.version,
        created_at=reservation.created_at,
        updated_at=reservation.updated_at,
    )


@dataclass
class InMemoryStore:
    """Process-local store keyed by id. Built once at startup, never module-global."""

    halls: dict[int, Hall] = field(default_factory=dict)
    reservations: dict[int, Reservation] = field(default_factory=dict)
    hall_ids: itertools.count = field(default_factory=lambda: itertools.count(1))
    reservation_ids: itertools.count = field(default_factory=lambda: itertools.count(1))
    slot_locks: dict[SlotKey, asyncio.Lock] = field(default_factory=dict)
    requester_locks: dict[tuple[int, date], asyncio.Lock] = field(default_factory=dict)

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


class InMemoryHallRepository(HallRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, hall_id: int) -> Hall | None:
        hall = self.store.halls.get(hall_id)
        return _copy_hall(hall) if hall is not None else None

    async def get_for_update(self, hall_id: int) -> Hall | None:
        return await self.get(hall_id)

    async def create(
        self,
        *,
        name: str,
        capacity: int,
        location: str | None,
        features: list[str],
    ) -> Hall:
        now = utc_now_naive()
        hall = Hall(
            id=next(self.store.hall_ids),
            name=name,
            capacity=capacity,
            location=location,
            features=list(features),
            created_at=now,
            updated_at=now,
            deleted_at=None,
        )
        self.store.halls[hall.id] = hall
        return _copy_hall(hall)

    async def list_active(self) -> list[Hall]:
        return [_copy_hall(h) for h in sorted(self.store.halls.values(), key=lambda h: h.id) if h.deleted_at is None]

    async def mark_deleted(self, hall: Hall, *, now: datetime) -> Hall:
        hall.deleted_at = now
        hall.updated_at = now
        self.store.halls[hall.id] = _copy_hall(hall)
        return hall


class InMemoryReservationRepository(ReservationRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    @asynccontextmanager
    async def lock_slot(self, hall_id: int, booking_date: date, period: int) -> AsyncIterator[None]:
        key = SlotKey(hall_id=hall_id, booking_date=booking_date, period=period)
        lock = self.store.slot_locks.setdefault(key, asyncio.Lock())
        async with lock:
            yield

    @asynccontextmanager
    async def lock_requester_day(self, requester_id: int, booking_date: date) -> AsyncIterator[None]:
        lock = self.store.requester_locks.setdefault((requester_id, booking_date), asyncio.Lock())
        async with lock:
            yield

    def _matching(self, hall_id: int, booking_date: date, period: int) -> list[Reservation]:
        return [
            r
            for r in self.store.reservations.values()
            if r.hall_id == hall_id and r.booking_date == booking_date and r.period == period
        ]

    async def find_occupant(
        self,
        *,
        hall_id: int,
        booking_date: date,
        period: int,
        statuses: Collection[ReservationStatus],
    ) -> Reservation | None:
        occupants = sorted(
            (r for r in self._matching(hall_id, booking_date, period) if r.status in statuses),
            key=lambda r: r.id,
        )
        return _copy_reservation(occupants[0]) if occupants else None

    async def count_for_requester(
        self,
        *,
        requester_id: int,
        booking_date: date,
        statuses: Collection[ReservationStatus],
    ) -> int:
        return sum(
            1
            for r in self.store.reservations.values()
            if r.requester_id == requester_id and r.booking_date == booking_date and r.status in statuses
        )

    async def create(
        self,
        *,
        hall_id: int,
        requester_id: int,
        booking_date: date,
        period: int,
        reason: str,
        status: ReservationStatus,
    ) -> Reservation:
        now = utc_now_naive()
        reservation = Reservation(
            id=next(self.store.reservation_ids),
            hall_id=hall_id,
            requester_id=requester_id,
            booking_date=booking_date,
            period=period,
            reason=reason,
            status=status,
            rejection_reason=None,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.store.reservations[reservation.id] = reservation
        return _copy_reservation(reservation)

    async def get(self, reservation_id: int) -> Reservation | None:
        reservation = self.store.reservations.get(reservation_id)
        return _copy_reservation(reservation) if reservation is not None else None

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        return await self.get(reservation_id)

    async def list(
        self,
        *,
        hall_id: int | None = None,
        requester_id: int | None = None,
        status: ReservationStatus | None = None,
        booking_date: date | None = None,
    ) -> list[Reservation]:
        rows = [
            r
            for r in self.store.reservations.values()
            if (hall_id is None or r.hall_id == hall_id)
            and (requester_id is None or r.requester_id == requester_id)
            and (status is None or r.status == status)
            and (booking_date is None or r.booking_date == booking_date)
        ]
        return [_copy_reservation(r) for r in sorted(rows, key=lambda r: r.id)]

    async def list_waitlist(self, *, hall_id: int, booking_date: date, period: int) -> list[Reservation]:
        rows = [r for r in self._matching(hall_id, booking_date, period) if r.status == ReservationStatus.WAITLIST]
        return [_copy_reservation(r) for r in sorted(rows, key=lambda r: (r.created_at, r.id))]

    async def save(self, reservation: Reservation) -> Reservation:
        self.store.reservations[reservation.id] = _copy_reservation(reservation)
        return reservation


class InMemoryUnitOfWork(UnitOfWork):
    # Writes land in the store immediately; slot locks provide the atomicity.
    def __init__(self, store: InMemoryStore) -> None:
        self.halls = InMemoryHallRepository(store)
        self.reservations = InMemoryReservationRepository(store)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        yield
