"""
approval_engines.sla -- SLA deadline calculation with business-hours clipping.

Responsibility:
    Turn SLA hours, an urgency level and a start instant into a deadline.
    Optionally counts only working time: a daily window on working days,
    skipping configured weekend days and holiday dates.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock access.

Invariants enforced:
    - Determinism: identical inputs always produce the same deadline.
    - Urgency multiplier is applied before business-hours clipping:

        | urgency | multiplier | floor |
        |---------|------------|-------|
        | 1       | 0.25       | 1h    |
        | 2       | 0.5        | 2h    |
        | 3       | 1.0        |       |
        | 4       | 1.5        |       |
        | 5       | 2.0        |       |

    - Business-hours arithmetic is closed-form per window.  A start before
      the window snaps to the window start; a balance that ends exactly at
      the window end returns the window end (it does not roll over).
    - Whole weeks are skipped in one jump when no holiday falls inside the
      week, so long SLAs stay O(weeks with holidays + 7).

Failure modes:
    - ValidationError for urgency outside 1..5 or non-positive SLA hours.
    - ValueError when a BusinessCalendar has no working days or an empty
      daily window.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from approval_engines.tracer import traced_engine
from approval_kernel.exceptions import ValidationError

SATURDAY = 5
SUNDAY = 6

_URGENCY_RULES: dict[int, tuple[float, float]] = {
    # urgency -> (multiplier, minimum hours)
    1: (0.25, 1.0),
    2: (0.5, 2.0),
    3: (1.0, 0.0),
    4: (1.5, 0.0),
    5: (2.0, 0.0),
}

_WEEK = timedelta(days=7)


@dataclass(frozen=True)
class BusinessCalendar:
    """Daily working window plus non-working weekdays and dates.

    ``weekend_days`` uses ``date.weekday()`` numbering (Monday == 0).
    """

    start: time = time(9, 0)
    end: time = time(17, 0)
    weekend_days: frozenset[int] = frozenset({SATURDAY, SUNDAY})
    holidays: frozenset[date] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("working window end must be after its start")
        if any(d < 0 or d > 6 for d in self.weekend_days):
            raise ValueError("weekend_days must be weekday numbers 0..6")
        if len(self.weekend_days) >= 7:
            raise ValueError("calendar has no working days")

    @property
    def window(self) -> timedelta:
        return datetime.combine(date.min, self.end) - datetime.combine(date.min, self.start)

    def is_working_day(self, day: date) -> bool:
        return day.weekday() not in self.weekend_days and day not in self.holidays

    def working_days_per_week(self) -> int:
        return 7 - len(self.weekend_days)

    def window_bounds(self, day: date, tzinfo) -> tuple[datetime, datetime]:
        return (
            datetime.combine(day, self.start, tzinfo=tzinfo),
            datetime.combine(day, self.end, tzinfo=tzinfo),
        )

    def has_holiday_between(self, first: date, last: date) -> bool:
        """True if a holiday falls in ``[first, last)``."""
        return any(first <= h < last for h in self.holidays)


DEFAULT_CALENDAR = BusinessCalendar()


def effective_sla_hours(sla_hours: float, urgency_level: int = 3) -> float:
    """Apply the urgency multiplier (and floor) to ``sla_hours``."""
    if isinstance(urgency_level, bool) or urgency_level not in _URGENCY_RULES:
        raise ValidationError.single("urgency_level", f"must be in 1..5, got {urgency_level!r}")
    if sla_hours is None or sla_hours <= 0:
        raise ValidationError.single("sla_hours", f"must be positive, got {sla_hours!r}")
    multiplier, floor = _URGENCY_RULES[urgency_level]
    return max(floor, sla_hours * multiplier)


def _next_working_start(day: date, calendar: BusinessCalendar, tzinfo) -> datetime:
    """Window start of the first working day strictly after ``day``."""
    candidate = day + timedelta(days=1)
    while not calendar.is_working_day(candidate):
        candidate += timedelta(days=1)
    return calendar.window_bounds(candidate, tzinfo)[0]


def add_business_hours(start: datetime, hours: float, calendar: BusinessCalendar = DEFAULT_CALENDAR) -> datetime:
    """Consume ``hours`` of working time from ``start`` and return the end instant."""
    remaining = timedelta(hours=hours)
    tzinfo = start.tzinfo
    cursor = start
    if remaining <= timedelta(0):
        return cursor

    window = calendar.window
    week_capacity = window * calendar.working_days_per_week()

    while True:
        day = cursor.date()
        if not calendar.is_working_day(day):
            cursor = _next_working_start(day, calendar, tzinfo)
            continue

        window_start, window_end = calendar.window_bounds(day, tzinfo)
        if cursor < window_start:
            cursor = window_start
        if cursor >= window_end:
            cursor = _next_working_start(day, calendar, tzinfo)
            continue

        # Whole-week fast-forward from a window start.  Strictly greater so a
        # balance that ends on the last window of the week is not skipped.
        if (
            cursor == window_start
            and remaining > week_capacity
            and not calendar.has_holiday_between(day, day + _WEEK)
        ):
            cursor = cursor + _WEEK
            remaining -= week_capacity
            continue

        available = window_end - cursor
        if remaining <= available:
            return cursor + remaining
        remaining -= available
        cursor = _next_working_start(day, calendar, tzinfo)


@traced_engine(
    "sla",
    "1.0",
    fingerprint_fields=("start", "sla_hours", "urgency_level", "business_hours_only"),
)
def calculate_deadline(
    *,
    start: datetime,
    sla_hours: float,
    urgency_level: int = 3,
    business_hours_only: bool = False,
    calendar: BusinessCalendar | None = None,
) -> datetime:
    """Deadline for an SLA of ``sla_hours`` started at ``start``."""
    hours = effective_sla_hours(sla_hours, urgency_level)
    if not business_hours_only:
        return start + timedelta(hours=hours)
    return add_business_hours(start, hours, calendar or DEFAULT_CALENDAR)


class SlaCalculator:
    """Calendar-bound facade over ``calculate_deadline``."""

    def __init__(self, calendar: BusinessCalendar | None = None) -> None:
        self.calendar = calendar or DEFAULT_CALENDAR

    def deadline(
        self,
        start: datetime,
        sla_hours: float,
        urgency_level: int = 3,
        business_hours_only: bool = False,
    ) -> datetime:
        return calculate_deadline(
            start=start,
            sla_hours=sla_hours,
            urgency_level=urgency_level,
            business_hours_only=business_hours_only,
            calendar=self.calendar,
        )

    @staticmethod
    def with_holidays(calendar: BusinessCalendar, holidays: Iterable[date]) -> BusinessCalendar:
        return BusinessCalendar(
            start=calendar.start,
            end=calendar.end,
            weekend_days=calendar.weekend_days,
            holidays=calendar.holidays | frozenset(holidays),
        )
