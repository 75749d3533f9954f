from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable

from ..domain.events import EventSink, ReservationEvent
from ..utils.audit_log import emit_audit_log

logger = logging.getLogger(__name__)

Subscriber = Callable[[ReservationEvent], Awaitable[None]]


class AuditLogEventSink:
    """Writes every event to the JSON audit log."""

    async def emit(self, event: ReservationEvent) -> None:
        emit_audit_log(
            action=event.name.value,
            initiator=event.initiator.value,
            record=event.record,
            status_from=event.previous_status,
        )


class RecordingEventSink:
    def __init__(self) -> None:
        self.events: list[ReservationEvent] = []

    async def emit(self, event: ReservationEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name.value for event in self.events]

    def for_reservation(self, reservation_id: int) -> list[ReservationEvent]:
        return [event for event in self.events if event.reservation_id == reservation_id]


class NullEventSink:
    async def emit(self, event: ReservationEvent) -> None:
        return None


class FanOutEventSink:
    """Delivers each event to every configured sink and dynamic subscriber.

    A failing subscriber is logged and skipped: the write it reports on has
    already committed. Failures in the configured sinks propagate.
    """

    def __init__(self, sinks: Iterable[EventSink] = ()) -> None:
        self._sinks = list(sinks)
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def emit(self, event: ReservationEvent) -> None:
        for sink in self._sinks:
            await sink.emit(event)
        for subscriber in list(self._subscribers):
            try:
                await subscriber(event)
            except Exception:
                logger.exception("subscriber failed for %s on reservation %s", event.name.value, event.reservation_id)
