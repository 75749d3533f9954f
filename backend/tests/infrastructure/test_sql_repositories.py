from datetime import date, datetime

import pytest
from hallbook.database import create_schema
from hallbook.domain.calendar import SlotCalendar
from hallbook.domain.errors import ConflictError, NotFoundError, TransientError
from hallbook.domain.services import AllocationMode, BookingPolicy
from hallbook.infrastructure.events import RecordingEventSink
from hallbook.infrastructure.repositories import SqlAlchemyUnitOfWork, storage_errors
from hallbook.models import ActorRole, Hall, Reservation, ReservationStatus
from hallbook.usecases import halls as hall_uc
from hallbook.usecases import reservations as res_uc
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

DAY = date(2025, 3, 10)
NOW = datetime(2025, 3, 10, 8, 0, 0)


def _engine() -> AsyncEngine:
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


def _policy(mode: AllocationMode) -> BookingPolicy:
    return BookingPolicy(mode=mode, calendar=SlotCalendar.default())


async def _prepare() -> tuple[async_sessionmaker[AsyncSession], int]:
    engine = _engine()
    await create_schema(engine)
    maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with maker() as session:
        hall = await hall_uc.create_hall(
            SqlAlchemyUnitOfWork(session),
            actor_role=ActorRole.ADMIN,
            name="h1",
            capacity=60,
            features=["projector"],
        )
    return maker, hall.id


async def _request(
    maker: async_sessionmaker[AsyncSession],
    policy: BookingPolicy,
    *,
    requester_id: int,
    hall_id: int,
) -> Reservation:
    async with maker() as session:
        return await res_uc.create_reservation(
            SqlAlchemyUnitOfWork(session),
            RecordingEventSink(),
            policy=policy,
            requester_id=requester_id,
            requester_role=ActorRole.FACULTY,
            hall_id=hall_id,
            booking_date=DAY,
            period=3,
            reason="Lecture",
            now=NOW,
        )


@pytest.mark.asyncio
async def test_sql_waitlist_flow_promotes_in_same_transaction() -> None:
    maker, hall_id = await _prepare()
    policy = _policy(AllocationMode.WAITLIST)

    holder = await _request(maker, policy, requester_id=1, hall_id=hall_id)
    first = await _request(maker, policy, requester_id=2, hall_id=hall_id)
    second = await _request(maker, policy, requester_id=3, hall_id=hall_id)
    assert holder.status == ReservationStatus.BOOKED
    assert [first.status, second.status] == [ReservationStatus.WAITLIST, ReservationStatus.WAITLIST]

    events = RecordingEventSink()
    async with maker() as session:
        cancelled = await res_uc.cancel_reservation(
            SqlAlchemyUnitOfWork(session),
            events,
            policy=policy,
            actor_id=1,
            actor_role=ActorRole.FACULTY,
            reservation_id=holder.id,
            now=NOW,
        )
    assert cancelled.status == ReservationStatus.CANCELLED
    assert events.names() == ["reservation.cancelled", "reservation.updated"]

    async with maker() as session:
        uow = SqlAlchemyUnitOfWork(session)
        promoted = await res_uc.get_reservation(uow, reservation_id=first.id)
        assert promoted.status == ReservationStatus.BOOKED
        assert promoted.version == 2
        assert await res_uc.get_waitlist_position(uow, reservation_id=second.id) == 1
        rows = await res_uc.list_reservations(uow, hall_id=hall_id, status=ReservationStatus.WAITLIST)
        assert [r.id for r in rows] == [second.id]


@pytest.mark.asyncio
async def test_sql_moderated_conflict_and_quota_count() -> None:
    maker, hall_id = await _prepare()
    policy = _policy(AllocationMode.MODERATED)

    holder = await _request(maker, policy, requester_id=1, hall_id=hall_id)
    with pytest.raises(ConflictError) as excinfo:
        await _request(maker, policy, requester_id=2, hall_id=hall_id)
    assert excinfo.value.occupying_id == holder.id

    async with maker() as session:
        count = await SqlAlchemyUnitOfWork(session).reservations.count_for_requester(
            requester_id=1,
            booking_date=DAY,
            statuses=policy.blocking_statuses,
        )
    assert count == 1


@pytest.mark.asyncio
async def test_sql_delete_hall_soft_deletes_and_cancels() -> None:
    maker, hall_id = await _prepare()
    policy = _policy(AllocationMode.WAITLIST)
    holder = await _request(maker, policy, requester_id=1, hall_id=hall_id)

    async with maker() as session:
        cancelled = await hall_uc.delete_hall(
            SqlAlchemyUnitOfWork(session),
            RecordingEventSink(),
            policy=policy,
            actor_id=900,
            actor_role=ActorRole.ADMIN,
            hall_id=hall_id,
            now=NOW,
        )
    assert [r.id for r in cancelled] == [holder.id]

    async with maker() as session:
        uow = SqlAlchemyUnitOfWork(session)
        assert await hall_uc.list_halls(uow) == []
        hall = await uow.halls.get(hall_id)
        assert hall is not None and hall.deleted_at == NOW
        stored = await res_uc.get_reservation(uow, reservation_id=holder.id)
        assert stored.status == ReservationStatus.CANCELLED

    with pytest.raises(NotFoundError):
        await _request(maker, policy, requester_id=2, hall_id=hall_id)


@pytest.mark.asyncio
async def test_sql_hall_read_for_update_refreshes_stale_identity() -> None:
    maker, hall_id = await _prepare()

    async with maker() as session:
        uow = SqlAlchemyUnitOfWork(session)
        cached = await uow.halls.get(hall_id)
        assert cached is not None and not cached.is_deleted
        await session.execute(
            update(Hall)
            .where(Hall.id == hall_id)
            .values(deleted_at=NOW)
            .execution_options(synchronize_session=False)
        )

        stale = await uow.halls.get(hall_id)
        assert stale is not None and stale.deleted_at is None
        fresh = await uow.halls.get_for_update(hall_id)
        assert fresh is not None and fresh.deleted_at == NOW


@pytest.mark.asyncio
async def test_storage_errors_maps_unavailability_to_transient() -> None:
    with pytest.raises(TransientError):
        async with storage_errors():
            raise OperationalError("SELECT 1", {}, Exception("server has gone away"))
    with pytest.raises(TransientError):
        async with storage_errors():
            raise DBAPIError("SELECT 1", {}, Exception("reset"), connection_invalidated=True)
    with pytest.raises(IntegrityError):
        async with storage_errors():
            raise IntegrityError("INSERT", {}, Exception("duplicate"))
