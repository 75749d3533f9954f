from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from ..domain.errors import ForbiddenError, NotFoundError, ValidationError
from ..domain.events import EventName, EventSink, ReservationEvent
from ..domain.repositories import UnitOfWork
from ..domain.services import BookingPolicy, parse_booking_date, parse_role, require_text
from ..domain.state_machine import Actor, transition
from ..models import TERMINAL_STATUSES, ActorRole, Hall, Reservation, ReservationStatus
from ..utils.time import utc_now_naive
from .reservations import run_atomic

logger = logging.getLogger(__name__)


def _require_admin(actor_role: ActorRole | str, action: str) -> ActorRole:
    role = parse_role(actor_role)
    if role != ActorRole.ADMIN:
        raise ForbiddenError(f"only administrators may {action}")
    return role


def normalize_features(features: Optional[Iterable[str]]) -> list[str]:
    """Features are an unordered set; store them deduplicated and sorted."""
    return sorted({f.strip() for f in features or () if f and f.strip()})


async def create_hall(
    uow: UnitOfWork,
    *,
    actor_role: ActorRole | str,
    name: str,
    capacity: int,
    location: Optional[str] = None,
    features: Optional[Iterable[str]] = None,
) -> Hall:
    _require_admin(actor_role, "create halls")
    hall_name = require_text(name, "name")
    if capacity < 1:
        raise ValidationError("capacity must be >= 1")
    async with uow.transaction():
        hall = await uow.halls.create(
            name=hall_name,
            capacity=capacity,
            location=location.strip() if location else None,
            features=normalize_features(features),
        )
    logger.info("hall %s (%s) created", hall.id, hall.name)
    return hall


async def list_halls(uow: UnitOfWork) -> list[Hall]:
    return await uow.halls.list_active()


async def get_hall(uow: UnitOfWork, *, hall_id: int) -> Hall:
    hall = await uow.halls.get(hall_id)
    if hall is None or hall.is_deleted:
        raise NotFoundError(f"hall {hall_id} not found")
    return hall


async def delete_hall(
    uow: UnitOfWork,
    events: EventSink,
    *,
    policy: BookingPolicy,
    actor_id: int,
    actor_role: ActorRole | str,
    hall_id: int,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> list[Reservation]:
    """
    Soft-delete a hall and cancel every open reservation it holds.

    Reservations are kept for audit history. No waitlist promotion happens:
    the queue is cancelled along with the slot it was waiting for.
    Returns the reservations that were cancelled.
    """
    actor = Actor(id=actor_id, role=_require_admin(actor_role, "delete halls"))
    moment = now or utc_now_naive()

    async def attempt() -> list[tuple[Reservation, ReservationStatus]]:
        async with uow.transaction():
            hall = await uow.halls.get_for_update(hall_id)
            if hall is None or hall.is_deleted:
                raise NotFoundError(f"hall {hall_id} not found")
            await uow.halls.mark_deleted(hall, now=moment)
            cancelled: list[tuple[Reservation, ReservationStatus]] = []
            for candidate in await uow.reservations.list(hall_id=hall_id):
                if candidate.status in TERMINAL_STATUSES:
                    continue
                async with uow.reservations.lock_slot(hall_id, candidate.booking_date, candidate.period):
                    reservation = await uow.reservations.get_for_update(candidate.id)
                    if reservation is None or reservation.status in TERMINAL_STATUSES:
                        continue
                    previous = transition(reservation, ReservationStatus.CANCELLED, actor, now=moment)
                    cancelled.append((await uow.reservations.save(reservation), previous))
            return cancelled

    cancelled = await run_atomic(attempt, policy=policy, timeout=timeout)
    logger.info("hall %s deleted, %d reservations cancelled", hall_id, len(cancelled))
    for reservation, previous in cancelled:
        await events.emit(
            ReservationEvent.of(EventName.CANCELLED, reservation, initiator=actor.role, previous_status=previous)
        )
    return [reservation for reservation, _ in cancelled]


async def list_availability(
    uow: UnitOfWork,
    *,
    policy: BookingPolicy,
    hall_id: int,
    booking_date: date | str,
) -> List[Dict[str, Any]]:
    """Per-period occupancy of one hall on one day, with server-side waitlist counts."""
    day = parse_booking_date(booking_date)
    await get_hall(uow, hall_id=hall_id)
    rows = await uow.reservations.list(hall_id=hall_id, booking_date=day)
    blocking = policy.blocking_statuses
    items: List[Dict[str, Any]] = []
    for period, period_range in policy.calendar.periods():
        in_period = [r for r in rows if r.period == period]
        occupant = next((r for r in in_period if r.status in blocking), None)
        waitlisted = sum(1 for r in in_period if r.status == ReservationStatus.WAITLIST)
        items.append(
            {
                "period": period,
                "range": period_range,
                "occupant": occupant,
                "waitlist": waitlisted,
                "free": occupant is None,
            }
        )
    return items
