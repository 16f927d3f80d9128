"""
Tests for SLA deadline calculation.

Tests cover:
- Urgency multipliers and floors
- Wall-clock deadlines
- Business-hours deadlines across evenings, weekends and holidays
- Property: business-hours result matches a minute-by-minute oracle
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.sla import (
    DEFAULT_CALENDAR,
    BusinessCalendar,
    SlaCalculator,
    add_business_hours,
    calculate_deadline,
    effective_sla_hours,
)
from approval_kernel.exceptions import ValidationError

UTC = timezone.utc


def at(day: int, hour: int, minute: int = 0) -> datetime:
    """January 2024; the 1st is a Monday."""
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


def oracle_business_minutes(start: datetime, minutes: int, calendar: BusinessCalendar) -> datetime:
    """Walk forward one working minute at a time."""
    cursor = start
    remaining = minutes
    step = timedelta(minutes=1)
    while remaining > 0:
        day = cursor.date()
        window_start, window_end = calendar.window_bounds(day, cursor.tzinfo)
        if calendar.is_working_day(day) and window_start <= cursor < window_end:
            remaining -= 1
        cursor += step
    return cursor


# =========================================================================
# 1. Urgency
# =========================================================================


class TestEffectiveSlaHours:

    @pytest.mark.parametrize("urgency,expected", [
        (1, 6.0),
        (2, 12.0),
        (3, 24.0),
        (4, 36.0),
        (5, 48.0),
    ])
    def test_multipliers(self, urgency, expected):
        assert effective_sla_hours(24, urgency) == expected

    def test_floors_for_urgent_levels(self):
        assert effective_sla_hours(2, 1) == 1.0
        assert effective_sla_hours(2, 2) == 2.0

    @pytest.mark.parametrize("urgency", [0, 6, True, None])
    def test_invalid_urgency_rejected(self, urgency):
        with pytest.raises(ValidationError):
            effective_sla_hours(24, urgency)

    @pytest.mark.parametrize("hours", [0, -1])
    def test_non_positive_hours_rejected(self, hours):
        with pytest.raises(ValidationError):
            effective_sla_hours(hours, 3)


# =========================================================================
# 2. Wall-clock deadlines
# =========================================================================


class TestWallClockDeadline:

    def test_adds_effective_hours(self):
        assert calculate_deadline(start=at(1, 12), sla_hours=24) == at(2, 12)

    def test_urgency_shortens_deadline(self):
        assert calculate_deadline(start=at(1, 12), sla_hours=24, urgency_level=1) == at(1, 18)


# =========================================================================
# 3. Business-hours deadlines
# =========================================================================


class TestBusinessHoursDeadline:

    def test_within_same_day(self):
        assert add_business_hours(at(1, 9), 4) == at(1, 13)

    def test_rolls_over_to_next_morning(self):
        # Mon 15:00 + 4h -> 2h Monday, 2h Tuesday
        assert add_business_hours(at(1, 15), 4) == at(2, 11)

    def test_start_before_window_begins_at_open(self):
        assert add_business_hours(at(1, 6), 1) == at(1, 10)

    def test_start_after_close_begins_next_day(self):
        assert add_business_hours(at(1, 20), 1) == at(2, 10)

    def test_skips_weekend(self):
        # Fri 16:00 + 2h -> 1h Friday, 1h Monday
        assert add_business_hours(at(5, 16), 2) == at(8, 10)

    def test_start_on_weekend(self):
        assert add_business_hours(at(6, 10), 1) == at(8, 10)

    def test_exactly_filling_a_window_ends_at_close(self):
        assert add_business_hours(at(1, 9), 8) == at(1, 17)

    def test_skips_holiday(self):
        calendar = BusinessCalendar(holidays=frozenset({date(2024, 1, 2)}))
        assert add_business_hours(at(1, 16), 2, calendar) == at(3, 10)

    def test_multi_week_span(self):
        # 80 business hours == two working weeks
        assert add_business_hours(at(1, 9), 80) == at(12, 17)

    def test_multi_week_span_with_holiday(self):
        calendar = SlaCalculator.with_holidays(DEFAULT_CALENDAR, [date(2024, 1, 10)])
        assert add_business_hours(at(1, 9), 80, calendar) == at(15, 17)

    def test_zero_hours_returns_start(self):
        assert add_business_hours(at(6, 10), 0) == at(6, 10)

    def test_calculator_uses_its_calendar(self):
        calendar = BusinessCalendar(start=time(8, 0), end=time(12, 0))
        calculator = SlaCalculator(calendar)

        deadline = calculator.deadline(at(1, 11), 2, business_hours_only=True)

        assert deadline == at(2, 9)


class TestBusinessCalendar:

    def test_rejects_empty_window(self):
        with pytest.raises(ValueError):
            BusinessCalendar(start=time(17, 0), end=time(9, 0))

    def test_rejects_calendar_without_working_days(self):
        with pytest.raises(ValueError):
            BusinessCalendar(weekend_days=frozenset(range(7)))

    def test_holiday_is_not_a_working_day(self):
        calendar = BusinessCalendar(holidays=frozenset({date(2024, 1, 3)}))
        assert not calendar.is_working_day(date(2024, 1, 3))
        assert calendar.is_working_day(date(2024, 1, 4))


# =========================================================================
# 4. Property: closed-form result equals the minute-walking oracle
# =========================================================================


class TestBusinessHoursProperty:

    @settings(max_examples=60, deadline=None)
    @given(
        start_offset=st.integers(min_value=0, max_value=14 * 24 * 60),
        minutes=st.integers(min_value=1, max_value=90 * 60),
        holiday_offsets=st.sets(st.integers(min_value=0, max_value=40), max_size=3),
    )
    def test_matches_oracle(self, start_offset, minutes, holiday_offsets):
        calendar = BusinessCalendar(
            holidays=frozenset(date(2024, 1, 1) + timedelta(days=d) for d in holiday_offsets),
        )
        start = at(1, 0) + timedelta(minutes=start_offset)

        result = add_business_hours(start, minutes / 60, calendar)

        assert result == oracle_business_minutes(start, minutes, calendar)

    @settings(max_examples=40, deadline=None)
    @given(
        start_offset=st.integers(min_value=0, max_value=7 * 24 * 60),
        hours=st.integers(min_value=1, max_value=60),
    )
    def test_deadline_is_monotonic_in_hours(self, start_offset, hours):
        start = at(1, 0) + timedelta(minutes=start_offset)
        assert add_business_hours(start, hours + 1) > add_business_hours(start, hours)
