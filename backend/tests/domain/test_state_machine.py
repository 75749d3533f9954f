from datetime import date, datetime

import pytest
from hallbook.domain.errors import ForbiddenError, InvalidTransitionError, ValidationError
from hallbook.domain.state_machine import (
    SYSTEM_ACTOR,
    TRANSITIONS,
    Actor,
    allowed_targets,
    apply_transition,
    check_transition,
    is_vacating,
    transition,
)
from hallbook.models import ActorRole, Reservation, ReservationStatus

S = ReservationStatus
NOW = datetime(2024, 3, 1, 8, 0, 0)

OWNER = Actor(id=7, role=ActorRole.FACULTY)
STRANGER = Actor(id=8, role=ActorRole.FACULTY)
ADMIN = Actor(id=99, role=ActorRole.ADMIN)


def _reservation(status: ReservationStatus) -> Reservation:
    return Reservation(
        id=1,
        hall_id=1,
        requester_id=OWNER.id,
        booking_date=date(2024, 3, 1),
        period=1,
        reason="seminar",
        status=status,
        rejection_reason=None,
        version=1,
        created_at=NOW,
        updated_at=NOW,
    )


def _legal_edges() -> list[tuple[ReservationStatus, ReservationStatus]]:
    return [(source, target) for source, targets in TRANSITIONS.items() for target in targets]


def _illegal_edges() -> list[tuple[ReservationStatus, ReservationStatus]]:
    return [(source, target) for source in S for target in S if target not in TRANSITIONS[source]]


def test_terminal_statuses_have_no_way_out() -> None:
    assert allowed_targets(S.REJECTED) == frozenset()
    assert allowed_targets(S.CANCELLED) == frozenset()


def test_transition_table_matches_lifecycle() -> None:
    assert allowed_targets(S.PENDING) == {S.ACCEPTED, S.REJECTED, S.CANCELLED}
    assert allowed_targets(S.ACCEPTED) == {S.BOOKED, S.REJECTED, S.CANCELLED}
    assert allowed_targets(S.BOOKED) == {S.CANCELLED}
    assert allowed_targets(S.WAITLIST) == {S.BOOKED, S.REJECTED, S.CANCELLED}


@pytest.mark.parametrize("source,target", _illegal_edges())
def test_illegal_edges_raise_invalid_transition(source: ReservationStatus, target: ReservationStatus) -> None:
    reservation = _reservation(source)
    with pytest.raises(InvalidTransitionError) as excinfo:
        check_transition(reservation, target, ADMIN, rejection_reason="any")
    assert excinfo.value.current == source.value
    assert excinfo.value.requested == target.value
    assert reservation.status == source
    assert reservation.version == 1


@pytest.mark.parametrize("status", list(S))
def test_self_loops_are_rejected(status: ReservationStatus) -> None:
    with pytest.raises(InvalidTransitionError):
        check_transition(_reservation(status), status, ADMIN)


def _permitted(actor: Actor, source: ReservationStatus, target: ReservationStatus) -> bool:
    if source == S.WAITLIST and target == S.BOOKED:
        return actor.role == ActorRole.SYSTEM
    if target == S.CANCELLED:
        return actor.is_admin or actor == OWNER
    return actor.is_admin


@pytest.mark.parametrize("actor", [OWNER, STRANGER, ADMIN, SYSTEM_ACTOR], ids=["owner", "stranger", "admin", "system"])
@pytest.mark.parametrize("source,target", _legal_edges())
def test_actor_rules_for_every_legal_edge(
    actor: Actor,
    source: ReservationStatus,
    target: ReservationStatus,
) -> None:
    reservation = _reservation(source)
    if _permitted(actor, source, target):
        previous = transition(reservation, target, actor, now=NOW, rejection_reason="room needed for exams")
        assert previous == source
        assert reservation.status == target
        assert reservation.version == 2
    else:
        with pytest.raises(ForbiddenError):
            transition(reservation, target, actor, now=NOW, rejection_reason="room needed for exams")
        assert reservation.status == source
        assert reservation.version == 1


def test_admin_with_same_id_as_owner_is_still_admin() -> None:
    reservation = _reservation(S.PENDING)
    transition(reservation, S.ACCEPTED, Actor(id=OWNER.id, role=ActorRole.ADMIN), now=NOW)
    assert reservation.status == S.ACCEPTED


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_rejection_requires_reason(reason: str | None) -> None:
    reservation = _reservation(S.PENDING)
    with pytest.raises(ValidationError):
        transition(reservation, S.REJECTED, ADMIN, now=NOW, rejection_reason=reason)
    assert reservation.status == S.PENDING


def test_forbidden_is_reported_before_missing_reason() -> None:
    with pytest.raises(ForbiddenError):
        check_transition(_reservation(S.PENDING), S.REJECTED, OWNER, rejection_reason=None)


def test_invalid_edge_is_reported_before_actor() -> None:
    with pytest.raises(InvalidTransitionError):
        check_transition(_reservation(S.CANCELLED), S.BOOKED, STRANGER)


def test_apply_transition_records_reason_and_timestamp() -> None:
    reservation = _reservation(S.PENDING)
    later = datetime(2024, 3, 1, 9, 30)
    previous = apply_transition(reservation, S.REJECTED, now=later, rejection_reason="  clashes with exam  ")
    assert previous == S.PENDING
    assert reservation.rejection_reason == "clashes with exam"
    assert reservation.updated_at == later
    assert reservation.version == 2


def test_apply_transition_drops_reason_for_other_targets() -> None:
    reservation = _reservation(S.PENDING)
    apply_transition(reservation, S.ACCEPTED, now=NOW, rejection_reason="ignored")
    assert reservation.rejection_reason is None


def test_is_vacating() -> None:
    blocking = frozenset({S.ACCEPTED, S.BOOKED})
    assert is_vacating(S.BOOKED, S.CANCELLED, blocking)
    assert is_vacating(S.ACCEPTED, S.REJECTED, blocking)
    assert not is_vacating(S.WAITLIST, S.CANCELLED, blocking)
    assert not is_vacating(S.ACCEPTED, S.BOOKED, blocking)
