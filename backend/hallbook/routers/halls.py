from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Path, Query, status

from ..deps import get_current_actor, get_event_sink, get_policy, get_uow
from ..domain.errors import BookingError
from ..domain.events import EventSink
from ..domain.repositories import UnitOfWork
from ..domain.services import BookingPolicy
from ..domain.state_machine import Actor
from ..schemas import HallCreate, HallRead, PeriodAvailability
from ..usecases import halls as hall_usecase
from .errors import to_http

router = APIRouter(prefix="/halls", tags=["halls"])


@router.get("", response_model=List[HallRead])
async def list_halls(uow: UnitOfWork = Depends(get_uow)) -> list[HallRead]:
    halls = await hall_usecase.list_halls(uow)
    return [HallRead.from_db(hall=hall) for hall in halls]


@router.get("/{hall_id}", response_model=HallRead)
async def get_hall(
    hall_id: int = Path(..., ge=1),
    uow: UnitOfWork = Depends(get_uow),
) -> HallRead:
    try:
        hall = await hall_usecase.get_hall(uow, hall_id=hall_id)
    except BookingError as exc:
        raise to_http(exc) from exc
    return HallRead.from_db(hall=hall)


@router.post("", response_model=HallRead, status_code=status.HTTP_201_CREATED)
async def create_hall(
    payload: HallCreate,
    uow: UnitOfWork = Depends(get_uow),
    actor: Actor = Depends(get_current_actor),
) -> HallRead:
    try:
        hall = await hall_usecase.create_hall(
            uow,
            actor_role=actor.role,
            name=payload.name,
            capacity=payload.capacity,
            location=payload.location,
            features=payload.features,
        )
    except BookingError as exc:
        raise to_http(exc) from exc
    return HallRead.from_db(hall=hall)


@router.delete("/{hall_id}", status_code=status.HTTP_200_OK)
async def delete_hall(
    hall_id: int = Path(..., ge=1),
    uow: UnitOfWork = Depends(get_uow),
    events: EventSink = Depends(get_event_sink),
    policy: BookingPolicy = Depends(get_policy),
    actor: Actor = Depends(get_current_actor),
) -> dict[str, object]:
    try:
        cancelled = await hall_usecase.delete_hall(
            uow,
            events,
            policy=policy,
            actor_id=actor.id,
            actor_role=actor.role,
            hall_id=hall_id,
        )
    except BookingError as exc:
        raise to_http(exc) from exc
    return {"hall_id": hall_id, "cancelled_reservation_ids": [r.id for r in cancelled]}


@router.get("/{hall_id}/availability", response_model=List[PeriodAvailability])
async def list_availability(
    hall_id: int = Path(..., ge=1),
    booking_date: date = Query(..., alias="date", description="Calendar date (ISO 8601)"),
    uow: UnitOfWork = Depends(get_uow),
    policy: BookingPolicy = Depends(get_policy),
) -> list[PeriodAvailability]:
    try:
        rows = await hall_usecase.list_availability(uow, policy=policy, hall_id=hall_id, booking_date=booking_date)
    except BookingError as exc:
        raise to_http(exc) from exc
    return [
        PeriodAvailability.from_entry(
            period=entry["period"],
            period_range=entry["range"],
            occupant=entry["occupant"],
            waitlist=entry["waitlist"],
        )
        for entry in rows
    ]
