from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Awaitable, Callable, Optional, TypeVar

from ..domain.errors import ConflictError, NotFoundError, TransientError, ValidationError
from ..domain.events import EventName, EventSink, ReservationEvent
from ..domain.repositories import ReservationRepository, UnitOfWork
from ..domain.services import (
    AllocationMode,
    BookingPolicy,
    RequestSnapshot,
    find_active_conflict,
    parse_booking_date,
    parse_role,
    require_text,
    validate_request,
)
from ..domain.state_machine import SYSTEM_ACTOR, Actor, is_vacating, transition
from ..models import ActorRole, Reservation, ReservationStatus
from ..utils.time import today_in, utc_now_naive

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_atomic(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: BookingPolicy,
    timeout: Optional[float] = None,
) -> T:
    """
    Run one atomic unit under a deadline.

    A timeout or storage failure is raised as TransientError once the
    configured retries are exhausted. Business errors pass through untouched.
    """
    limit = timeout if timeout is not None else policy.timeout_seconds
    attempts = policy.transient_retries + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            return await asyncio.wait_for(operation(), timeout=limit)
        except (TimeoutError, TransientError) as exc:
            if attempt >= attempts:
                if isinstance(exc, TransientError):
                    raise
                raise TransientError(f"storage did not answer within {limit:g}s") from exc
            logger.warning("transient storage failure, retrying (%d/%d): %r", attempt, attempts, exc)


def parse_status(value: ReservationStatus | str) -> ReservationStatus:
    try:
        return ReservationStatus(value)
    except ValueError as exc:
        raise ValidationError(f"unknown status {value!r}") from exc


async def create_reservation(
    uow: UnitOfWork,
    events: EventSink,
    *,
    policy: BookingPolicy,
    requester_id: int,
    requester_role: ActorRole | str,
    hall_id: int,
    booking_date: date | str,
    period: int,
    reason: str,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> Reservation:
    role = parse_role(requester_role)
    day = parse_booking_date(booking_date)
    policy.calendar.describe(period)
    text = require_text(reason, "reason")
    today = today_in(policy.timezone, now=now)

    async def attempt() -> Reservation:
        async with (
            uow.transaction(),
            uow.reservations.lock_requester_day(requester_id, day),
            uow.reservations.lock_slot(hall_id, day, period),
        ):
            # Read under the lock: delete_hall may have committed while this waited.
            hall = await uow.halls.get_for_update(hall_id)
            if hall is None or hall.is_deleted:
                raise NotFoundError(f"hall {hall_id} not found")
            active = await uow.reservations.count_for_requester(
                requester_id=requester_id,
                booking_date=day,
                statuses=policy.blocking_statuses,
            )
            validate_request(
                RequestSnapshot(requester_role=role, booking_date=day, today=today, active_on_date=active),
                policy=policy,
            )
            occupant = await find_active_conflict(
                uow.reservations,
                mode=policy.mode,
                hall_id=hall_id,
                booking_date=day,
                period=period,
            )
            if occupant is None:
                status = policy.initial_status
            elif policy.mode == AllocationMode.WAITLIST:
                status = ReservationStatus.WAITLIST
            else:
                raise ConflictError(
                    f"hall {hall_id} period {period} on {day.isoformat()} is already held by "
                    f"reservation {occupant.id} ({ReservationStatus(occupant.status).value})",
                    occupying=occupant,
                )
            return await uow.reservations.create(
                hall_id=hall_id,
                requester_id=requester_id,
                booking_date=day,
                period=period,
                reason=text,
                status=status,
            )

    reservation = await run_atomic(attempt, policy=policy, timeout=timeout)
    logger.info(
        "reservation %s created for hall %s on %s period %s as %s",
        reservation.id,
        hall_id,
        day.isoformat(),
        period,
        ReservationStatus(reservation.status).value,
    )
    await events.emit(ReservationEvent.of(EventName.CREATED, reservation, initiator=role))
    return reservation


async def _promote_next(
    res_repo: ReservationRepository,
    policy: BookingPolicy,
    vacated: Reservation,
    *,
    now: datetime,
) -> Optional[Reservation]:
    occupant = await find_active_conflict(
        res_repo,
        mode=policy.mode,
        hall_id=vacated.hall_id,
        booking_date=vacated.booking_date,
        period=vacated.period,
    )
    if occupant is not None:
        return None
    queue = await res_repo.list_waitlist(
        hall_id=vacated.hall_id,
        booking_date=vacated.booking_date,
        period=vacated.period,
    )
    if not queue:
        return None
    head = queue[0]
    transition(head, ReservationStatus.BOOKED, SYSTEM_ACTOR, now=now)
    return await res_repo.save(head)


async def transition_reservation(
    uow: UnitOfWork,
    events: EventSink,
    *,
    policy: BookingPolicy,
    actor_id: int,
    actor_role: ActorRole | str,
    reservation_id: int,
    target_status: ReservationStatus | str,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> Reservation:
    actor = Actor(id=actor_id, role=parse_role(actor_role))
    target = parse_status(target_status)
    moment = now or utc_now_naive()

    async def attempt() -> tuple[Reservation, ReservationStatus, Optional[Reservation]]:
        async with uow.transaction():
            current = await uow.reservations.get(reservation_id)
            if current is None:
                raise NotFoundError(f"reservation {reservation_id} not found")
            async with uow.reservations.lock_slot(current.hall_id, current.booking_date, current.period):
                reservation = await uow.reservations.get_for_update(reservation_id)
                if reservation is None:
                    raise NotFoundError(f"reservation {reservation_id} not found")
                previous = transition(reservation, target, actor, now=moment, rejection_reason=rejection_reason)
                reservation = await uow.reservations.save(reservation)
                promoted = None
                if policy.mode == AllocationMode.WAITLIST and is_vacating(previous, target, policy.blocking_statuses):
                    promoted = await _promote_next(uow.reservations, policy, reservation, now=moment)
                return reservation, previous, promoted

    reservation, previous, promoted = await run_atomic(attempt, policy=policy, timeout=timeout)
    logger.info(
        "reservation %s moved from %s to %s by %s %s",
        reservation.id,
        previous.value,
        target.value,
        actor.role.value,
        actor.id,
    )
    name = EventName.CANCELLED if target == ReservationStatus.CANCELLED else EventName.UPDATED
    await events.emit(ReservationEvent.of(name, reservation, initiator=actor.role, previous_status=previous))
    if promoted is not None:
        logger.info("reservation %s promoted from waitlist after %s vacated", promoted.id, reservation.id)
        await events.emit(
            ReservationEvent.of(
                EventName.UPDATED,
                promoted,
                initiator=ActorRole.SYSTEM,
                previous_status=ReservationStatus.WAITLIST,
            )
        )
    return reservation


async def cancel_reservation(
    uow: UnitOfWork,
    events: EventSink,
    *,
    policy: BookingPolicy,
    actor_id: int,
    actor_role: ActorRole | str,
    reservation_id: int,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> Reservation:
    return await transition_reservation(
        uow,
        events,
        policy=policy,
        actor_id=actor_id,
        actor_role=actor_role,
        reservation_id=reservation_id,
        target_status=ReservationStatus.CANCELLED,
        now=now,
        timeout=timeout,
    )


async def list_reservations(
    uow: UnitOfWork,
    *,
    hall_id: Optional[int] = None,
    requester_id: Optional[int] = None,
    status: Optional[ReservationStatus | str] = None,
    booking_date: Optional[date | str] = None,
) -> list[Reservation]:
    return await uow.reservations.list(
        hall_id=hall_id,
        requester_id=requester_id,
        status=parse_status(status) if status is not None else None,
        booking_date=parse_booking_date(booking_date) if booking_date is not None else None,
    )


async def get_reservation(uow: UnitOfWork, *, reservation_id: int) -> Reservation:
    reservation = await uow.reservations.get(reservation_id)
    if reservation is None:
        raise NotFoundError(f"reservation {reservation_id} not found")
    return reservation


async def get_waitlist_position(uow: UnitOfWork, *, reservation_id: int) -> int:
    """1-based place in the FIFO queue for the slot, or 0 when not waitlisted."""
    reservation = await get_reservation(uow, reservation_id=reservation_id)
    if reservation.status != ReservationStatus.WAITLIST:
        return 0
    queue = await uow.reservations.list_waitlist(
        hall_id=reservation.hall_id,
        booking_date=reservation.booking_date,
        period=reservation.period,
    )
    for position, entry in enumerate(queue, start=1):
        if entry.id == reservation.id:
            return position
    return 0
