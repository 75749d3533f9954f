from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Iterator

from .errors import OutOfRangeError, ValidationError

# Campus timetable, "HH:MM-HH:MM" comma separated.
DEFAULT_PERIODS = (
    "09:50-10:00,10:00-10:45,11:00-11:50,11:50-12:45,"
    "13:25-14:20,14:20-15:05,15:10-16:00,16:00-16:50"
)


@dataclass(frozen=True)
class PeriodRange:
    start: time
    end: time

    @property
    def label(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True, order=True)
class SlotKey:
    hall_id: int
    booking_date: date
    period: int


def parse_periods(raw: str) -> tuple[PeriodRange, ...]:
    """Parse ``"09:00-09:50,10:00-10:50"`` into ordered period ranges."""
    periods: list[PeriodRange] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            start_raw, end_raw = chunk.split("-")
            start = time.fromisoformat(start_raw.strip())
            end = time.fromisoformat(end_raw.strip())
        except ValueError as exc:
            raise ValidationError(f"invalid period definition {chunk!r}") from exc
        if start >= end:
            raise ValidationError(f"period {chunk!r} must start before it ends")
        if periods and start < periods[-1].end:
            raise ValidationError(f"period {chunk!r} overlaps the previous period")
        periods.append(PeriodRange(start=start, end=end))
    if not periods:
        raise ValidationError("at least one period must be configured")
    return tuple(periods)


class SlotCalendar:
    """Fixed, ordered set of bookable periods in a day.

    Periods are numbered from 1. Instances are immutable and safe to share.
    """

    __slots__ = ("_periods",)

    def __init__(self, periods: tuple[PeriodRange, ...]) -> None:
        if not periods:
            raise ValidationError("at least one period must be configured")
        self._periods = tuple(periods)

    @classmethod
    def default(cls) -> "SlotCalendar":
        return cls(parse_periods(DEFAULT_PERIODS))

    def period_count(self) -> int:
        return len(self._periods)

    def describe(self, period: int) -> PeriodRange:
        if isinstance(period, bool) or not isinstance(period, int) or not 1 <= period <= len(self._periods):
            raise OutOfRangeError(f"period {period!r} is outside 1..{len(self._periods)}")
        return self._periods[period - 1]

    def label(self, period: int) -> str:
        return self.describe(period).label

    def key(self, hall_id: int, booking_date: date, period: int) -> SlotKey:
        self.describe(period)
        return SlotKey(hall_id=hall_id, booking_date=booking_date, period=period)

    def periods(self) -> Iterator[tuple[int, PeriodRange]]:
        return enumerate(self._periods, start=1)
