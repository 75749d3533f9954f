from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from ..deps import get_current_actor, get_event_sink, get_policy, get_uow
from ..domain.errors import BookingError
from ..domain.events import EventSink
from ..domain.repositories import UnitOfWork
from ..domain.services import BookingPolicy
from ..domain.state_machine import Actor
from ..models import ReservationStatus
from ..schemas import ReservationCreate, ReservationRead, ReservationTransition, WaitlistPosition
from ..usecases import reservations as reservation_usecase
from .errors import to_http

router = APIRouter(prefix="/reservations", tags=["reservations"], dependencies=[Depends(get_current_actor)])


@router.post("", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    uow: UnitOfWork = Depends(get_uow),
    events: EventSink = Depends(get_event_sink),
    policy: BookingPolicy = Depends(get_policy),
    actor: Actor = Depends(get_current_actor),
) -> ReservationRead:
    try:
        reservation = await reservation_usecase.create_reservation(
            uow,
            events,
            policy=policy,
            requester_id=actor.id,
            requester_role=actor.role,
            hall_id=payload.hall_id,
            booking_date=payload.booking_date,
            period=payload.period,
            reason=payload.reason,
        )
    except BookingError as exc:
        raise to_http(exc) from exc
    return ReservationRead.from_db(reservation=reservation, calendar=policy.calendar)


@router.get("", response_model=List[ReservationRead])
async def list_reservations(
    hall_id: Optional[int] = Query(default=None, ge=1),
    requester_id: Optional[int] = Query(default=None),
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    booking_date: Optional[date] = Query(default=None, alias="date"),
    uow: UnitOfWork = Depends(get_uow),
    policy: BookingPolicy = Depends(get_policy),
) -> list[ReservationRead]:
    try:
        rows = await reservation_usecase.list_reservations(
            uow,
            hall_id=hall_id,
            requester_id=requester_id,
            status=status_filter,
            booking_date=booking_date,
        )
    except BookingError as exc:
        raise to_http(exc) from exc
    return [ReservationRead.from_db(reservation=r, calendar=policy.calendar) for r in rows]


@router.get("/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: int = Path(..., ge=1),
    uow: UnitOfWork = Depends(get_uow),
    policy: BookingPolicy = Depends(get_policy),
) -> ReservationRead:
    try:
        reservation = await reservation_usecase.get_reservation(uow, reservation_id=reservation_id)
    except BookingError as exc:
        raise to_http(exc) from exc
    return ReservationRead.from_db(reservation=reservation, calendar=policy.calendar)


@router.post("/{reservation_id}/transition", response_model=ReservationRead)
async def transition_reservation(
    payload: ReservationTransition,
    reservation_id: int = Path(..., ge=1),
    uow: UnitOfWork = Depends(get_uow),
    events: EventSink = Depends(get_event_sink),
    policy: BookingPolicy = Depends(get_policy),
    actor: Actor = Depends(get_current_actor),
) -> ReservationRead:
    try:
        reservation = await reservation_usecase.transition_reservation(
            uow,
            events,
            policy=policy,
            actor_id=actor.id,
            actor_role=actor.role,
            reservation_id=reservation_id,
            target_status=payload.status,
            rejection_reason=payload.rejection_reason,
        )
    except BookingError as exc:
        raise to_http(exc) from exc
    return ReservationRead.from_db(reservation=reservation, calendar=policy.calendar)


@router.post("/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    uow: UnitOfWork = Depends(get_uow),
    events: EventSink = Depends(get_event_sink),
    policy: BookingPolicy = Depends(get_policy),
    actor: Actor = Depends(get_current_actor),
) -> ReservationRead:
    try:
        reservation = await reservation_usecase.cancel_reservation(
            uow,
            events,
            policy=policy,
            actor_id=actor.id,
            actor_role=actor.role,
            reservation_id=reservation_id,
        )
    except BookingError as exc:
        raise to_http(exc) from exc
    return ReservationRead.from_db(reservation=reservation, calendar=policy.calendar)


@router.get("/{reservation_id}/waitlist-position", response_model=WaitlistPosition)
async def get_waitlist_position(
    reservation_id: int = Path(..., ge=1),
    uow: UnitOfWork = Depends(get_uow),
) -> WaitlistPosition:
    try:
        position = await reservation_usecase.get_waitlist_position(uow, reservation_id=reservation_id)
    except BookingError as exc:
        raise to_http(exc) from exc
    return WaitlistPosition(reservation_id=reservation_id, position=position)
