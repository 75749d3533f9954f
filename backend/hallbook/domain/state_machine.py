from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Mapping, Optional

from ..models import TERMINAL_STATUSES, ActorRole, Reservation, ReservationStatus
from .errors import ForbiddenError, InvalidTransitionError, ValidationError


@dataclass(frozen=True)
class Actor:
    id: int
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


SYSTEM_ACTOR = Actor(id=0, role=ActorRole.SYSTEM)


class ActorRule(StrEnum):
    ADMIN = "admin"
    OWNER_OR_ADMIN = "owner_or_admin"
    SYSTEM = "system"


S = ReservationStatus

TRANSITIONS: Mapping[ReservationStatus, Mapping[ReservationStatus, ActorRule]] = {
    S.PENDING: {
        S.ACCEPTED: ActorRule.ADMIN,
        S.REJECTED: ActorRule.ADMIN,
        S.CANCELLED: ActorRule.OWNER_OR_ADMIN,
    },
    S.ACCEPTED: {
        S.BOOKED: ActorRule.ADMIN,
        S.REJECTED: ActorRule.ADMIN,
        S.CANCELLED: ActorRule.OWNER_OR_ADMIN,
    },
    S.BOOKED: {
        S.CANCELLED: ActorRule.OWNER_OR_ADMIN,
    },
    S.WAITLIST: {
        S.BOOKED: ActorRule.SYSTEM,
        S.REJECTED: ActorRule.ADMIN,
        S.CANCELLED: ActorRule.OWNER_OR_ADMIN,
    },
    S.REJECTED: {},
    S.CANCELLED: {},
}


def allowed_targets(current: ReservationStatus) -> frozenset[ReservationStatus]:
    return frozenset(TRANSITIONS[current])


def _actor_satisfies(rule: ActorRule, actor: Actor, reservation: Reservation) -> bool:
    if rule == ActorRule.SYSTEM:
        return actor.role == ActorRole.SYSTEM
    if rule == ActorRule.ADMIN:
        return actor.is_admin
    return actor.is_admin or (actor.role == ActorRole.FACULTY and actor.id == reservation.requester_id)


def check_transition(
    reservation: Reservation,
    target: ReservationStatus,
    actor: Actor,
    *,
    rejection_reason: Optional[str] = None,
) -> None:
    """
    Raise unless ``actor`` may move ``reservation`` to ``target``.

    Order of checks: edge exists, actor rule, then the rejection reason.
    """
    current = ReservationStatus(reservation.status)
    rule = TRANSITIONS[current].get(target)
    if rule is None:
        raise InvalidTransitionError(current.value, ReservationStatus(target).value)
    if not _actor_satisfies(rule, actor, reservation):
        raise ForbiddenError(
            f"{actor.role.value} {actor.id} may not move reservation {reservation.id} "
            f"from {current.value} to {target.value}"
        )
    if target == S.REJECTED and (rejection_reason is None or not rejection_reason.strip()):
        raise ValidationError("rejection reason is required")


def apply_transition(
    reservation: Reservation,
    target: ReservationStatus,
    *,
    now: datetime,
    rejection_reason: Optional[str] = None,
) -> ReservationStatus:
    """Mutate ``reservation`` into ``target``. Returns the previous status.

    Callers must have run :func:`check_transition` first.
    """
    previous = ReservationStatus(reservation.status)
    reservation.status = target
    reservation.rejection_reason = rejection_reason.strip() if target == S.REJECTED and rejection_reason else None
    reservation.version += 1
    reservation.updated_at = now
    return previous


def transition(
    reservation: Reservation,
    target: ReservationStatus,
    actor: Actor,
    *,
    now: datetime,
    rejection_reason: Optional[str] = None,
) -> ReservationStatus:
    check_transition(reservation, target, actor, rejection_reason=rejection_reason)
    return apply_transition(reservation, target, now=now, rejection_reason=rejection_reason)


def is_vacating(previous: ReservationStatus, target: ReservationStatus, blocking: frozenset[ReservationStatus]) -> bool:
    """True when the move frees a slot that ``previous`` was occupying."""
    return previous in blocking and target in TERMINAL_STATUSES
