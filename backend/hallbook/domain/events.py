from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional, Protocol

from ..models import ActorRole, Reservation, ReservationStatus


class EventName(StrEnum):
    CREATED = "reservation.created"
    UPDATED = "reservation.updated"
    CANCELLED = "reservation.cancelled"


@dataclass(frozen=True)
class ReservationEvent:
    name: EventName
    record: dict[str, Any]
    initiator: ActorRole
    previous_status: Optional[ReservationStatus] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def of(
        cls,
        name: EventName,
        reservation: Reservation,
        *,
        initiator: ActorRole,
        previous_status: Optional[ReservationStatus] = None,
    ) -> "ReservationEvent":
        return cls(name=name, record=reservation.to_record(), initiator=initiator, previous_status=previous_status)

    @property
    def reservation_id(self) -> int:
        return int(self.record["id"])


class EventSink(Protocol):
    async def emit(self, event: ReservationEvent) -> None: ...
