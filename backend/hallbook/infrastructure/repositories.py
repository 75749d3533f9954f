from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Collection, List

from sqlalchemy import Select, func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import TransientError
from ..domain.repositories import HallRepository, ReservationRepository, UnitOfWork
from ..models import Hall, Reservation, ReservationStatus
from ..utils.time import utc_now_naive


@asynccontextmanager
async def storage_errors() -> AsyncIterator[None]:
    """Map driver-level unavailability onto TransientError."""
    try:
        yield
    except OperationalError as exc:
        raise TransientError("storage unavailable") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientError("storage connection lost") from exc
        raise


class SqlAlchemyHallRepository(HallRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, hall_id: int) -> Hall | None:
        async with storage_errors():
            result = await self.session.scalar(select(Hall).where(Hall.id == hall_id))
        return result if isinstance(result, Hall) else None

    async def get_for_update(self, hall_id: int) -> Hall | None:
        stmt = select(Hall).where(Hall.id == hall_id).with_for_update().execution_options(populate_existing=True)
        async with storage_errors():
            result = await self.session.scalar(stmt)
        return result if isinstance(result, Hall) else None

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
            name=name,
            capacity=capacity,
            location=location,
            features=list(features),
            created_at=now,
            updated_at=now,
        )
        async with storage_errors():
            self.session.add(hall)
            await self.session.flush()
        return hall

    async def list_active(self) -> List[Hall]:
        stmt = select(Hall).where(Hall.deleted_at.is_(None)).order_by(Hall.id)
        async with storage_errors():
            rows = await self.session.scalars(stmt)
            return list(rows.all())

    async def mark_deleted(self, hall: Hall, *, now: datetime) -> Hall:
        hall.deleted_at = now
        hall.updated_at = now
        async with storage_errors():
            self.session.add(hall)
            await self.session.flush()
        return hall


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def lock_slot(self, hall_id: int, booking_date: date, period: int) -> AsyncIterator[None]:
        # Row lock on the hall; released when the caller's transaction ends.
        async with storage_errors():
            await self.session.scalar(select(Hall.id).where(Hall.id == hall_id).with_for_update())
        yield

    @asynccontextmanager
    async def lock_requester_day(self, requester_id: int, booking_date: date) -> AsyncIterator[None]:
        # Next-key locks on idx_res_requester_date; a competing insert for the
        # same requester and date waits or fails as a deadlock, which retries.
        stmt = (
            select(Reservation.id)
            .where(Reservation.requester_id == requester_id, Reservation.booking_date == booking_date)
            .with_for_update()
        )
        async with storage_errors():
            await self.session.scalars(stmt)
        yield

    async def find_occupant(
        self,
        *,
        hall_id: int,
        booking_date: date,
        period: int,
        statuses: Collection[ReservationStatus],
    ) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(
                Reservation.hall_id == hall_id,
                Reservation.booking_date == booking_date,
                Reservation.period == period,
                Reservation.status.in_(list(statuses)),
            )
            .order_by(Reservation.id)
            .limit(1)
        )
        async with storage_errors():
            result = await self.session.scalar(stmt)
        return result if isinstance(result, Reservation) else None

    async def count_for_requester(
        self,
        *,
        requester_id: int,
        booking_date: date,
        statuses: Collection[ReservationStatus],
    ) -> int:
        stmt = select(func.count(Reservation.id)).where(
            Reservation.requester_id == requester_id,
            Reservation.booking_date == booking_date,
            Reservation.status.in_(list(statuses)),
        )
        async with storage_errors():
            return int(await self.session.scalar(stmt) or 0)

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
            hall_id=hall_id,
            requester_id=requester_id,
            booking_date=booking_date,
            period=period,
            reason=reason,
            status=status,
            version=1,
            created_at=now,
            updated_at=now,
        )
        async with storage_errors():
            self.session.add(reservation)
            await self.session.flush()
        return reservation

    async def get(self, reservation_id: int) -> Reservation | None:
        async with storage_errors():
            result = await self.session.scalar(select(Reservation).where(Reservation.id == reservation_id))
        return result if isinstance(result, Reservation) else None

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        async with storage_errors():
            result = await self.session.scalar(stmt)
        return result if isinstance(result, Reservation) else None

    async def list(
        self,
        *,
        hall_id: int | None = None,
        requester_id: int | None = None,
        status: ReservationStatus | None = None,
        booking_date: date | None = None,
    ) -> List[Reservation]:
        stmt: Select[tuple[Reservation]] = select(Reservation).order_by(Reservation.id)
        if hall_id is not None:
            stmt = stmt.where(Reservation.hall_id == hall_id)
        if requester_id is not None:
            stmt = stmt.where(Reservation.requester_id == requester_id)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        if booking_date is not None:
            stmt = stmt.where(Reservation.booking_date == booking_date)
        async with storage_errors():
            rows = await self.session.scalars(stmt)
            return list(rows.all())

    async def list_waitlist(self, *, hall_id: int, booking_date: date, period: int) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                Reservation.hall_id == hall_id,
                Reservation.booking_date == booking_date,
                Reservation.period == period,
                Reservation.status == ReservationStatus.WAITLIST,
            )
            .order_by(Reservation.created_at, Reservation.id)
        )
        async with storage_errors():
            rows = await self.session.scalars(stmt)
            return list(rows.all())

    async def save(self, reservation: Reservation) -> Reservation:
        async with storage_errors():
            self.session.add(reservation)
            await self.session.flush()
        return reservation


class SqlAlchemyUnitOfWork(UnitOfWork):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.halls = SqlAlchemyHallRepository(session)
        self.reservations = SqlAlchemyReservationRepository(session)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self.session.in_transaction():
            # Close the read-only transaction autobegun by earlier queries.
            await self.session.commit()
        async with storage_errors():
            async with self.session.begin():
                yield
