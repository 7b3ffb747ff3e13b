"""
Tests for delivery and pickup window availability.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from checkout.application.use_cases.availability import (
    REASON_FULLY_BOOKED,
    REASON_LEAD_TIME,
    REASON_PASSED,
    AvailabilityCalculator,
)
from checkout.domain.entities.calendar_rules import BusinessCalendarRule, SchedulingPolicy
from checkout.domain.entities.delivery_slot import DeliveryTimeWindow
from checkout.infrastructure.calendar.business_calendar import build_calendar_rules

LAGOS = ZoneInfo("Africa/Lagos")


def _window(slot, start_time):
    return next(w for w in slot.time_windows if w.start_time == start_time)


def test_one_slot_per_date_in_range(calculator, now):
    slots = calculator.get_slots(date(2026, 10, 20), date(2026, 10, 26), "delivery", now=now)

    assert [s.date for s in slots] == [date(2026, 10, 20) + timedelta(days=i) for i in range(7)]


def test_weekday_and_sunday_hours(calculator, now):
    wednesday = calculator.get_slot(date(2026, 10, 21), "delivery", now=now)
    sunday = calculator.get_slot(date(2026, 10, 25), "delivery", now=now)

    assert wednesday.time_windows[0].start_time == "08:00"
    assert wednesday.time_windows[-1].end_time == "19:00"
    assert len(wednesday.time_windows) == 11
    assert [w.start_time for w in sunday.time_windows] == ["10:00", "11:00", "12:00", "13:00", "14:00", "15:00"]


def test_fixed_closed_date_is_not_a_business_day(calculator, now):
    slot = calculator.get_slot(date(2026, 12, 25), "delivery", now=now)

    assert slot.is_business_day is False
    assert slot.is_holiday is True
    assert slot.holiday_name == "Christmas Day"
    assert slot.time_windows == ()


def test_public_holiday_is_closed(calculator):
    slot = calculator.get_slot(date(2026, 10, 1), "pickup", now=datetime(2026, 9, 28, 9, 0, tzinfo=LAGOS))

    assert slot.is_business_day is False
    assert slot.holiday_name == "Independence Day"


def test_closure_wins_over_special_opening():
    rules = BusinessCalendarRule(
        fixed_closed_dates={"01-08": "Staff Day"},
        special_opening_times={"2027-01-08": "12:00"},
    )
    calculator = AvailabilityCalculator(rules, SchedulingPolicy(), LAGOS)

    slot = calculator.get_slot(date(2027, 1, 8), "delivery", now=datetime(2027, 1, 4, 9, 0, tzinfo=LAGOS))

    assert slot.is_business_day is False
    assert slot.holiday_name == "Staff Day"


def test_windows_that_started_are_passed(calculator, now):
    slot = calculator.get_slot(now.date(), "delivery", now=now)

    assert _window(slot, "08:00").reason == REASON_PASSED
    assert _window(slot, "08:00").available is False


def test_window_thirty_minutes_out_lacks_lead_time(calculator):
    now = datetime(2026, 10, 20, 9, 30, tzinfo=LAGOS)

    slot = calculator.get_slot(now.date(), "delivery", now=now)

    window = _window(slot, "10:00")
    assert window.available is False
    assert window.reason == REASON_LEAD_TIME
    assert _window(slot, "11:00").available is True


def test_pre_order_cutoff_blocks_the_next_day(calculator):
    before = datetime(2026, 12, 22, 15, 0, tzinfo=LAGOS)
    after = datetime(2026, 12, 23, 0, 30, tzinfo=LAGOS)

    open_slot = calculator.get_slot(date(2026, 12, 24), "delivery", now=before)
    blocked_slot = calculator.get_slot(date(2026, 12, 24), "delivery", now=after)

    assert all(w.available for w in open_slot.time_windows)
    assert blocked_slot.is_business_day is True
    assert not any(w.available for w in blocked_slot.time_windows)
    assert "pre-orders closed" in blocked_slot.time_windows[0].reason


def test_special_opening_time_blocks_earlier_windows(calculator):
    now = datetime(2027, 1, 4, 9, 0, tzinfo=LAGOS)

    slot = calculator.get_slot(date(2027, 1, 8), "delivery", now=now)

    assert _window(slot, "11:00").reason == "opens at 12:00 on this date"
    assert _window(slot, "12:00").available is True


def test_disabled_fulfillment_only_affects_that_type(calculator):
    now = datetime(2026, 12, 28, 9, 0, tzinfo=LAGOS)

    delivery = calculator.get_slot(date(2026, 12, 31), "delivery", now=now)
    pickup = calculator.get_slot(date(2026, 12, 31), "pickup", now=now)

    assert not any(w.available for w in delivery.time_windows)
    assert delivery.time_windows[0].reason.startswith("Delivery unavailable")
    assert all(w.available for w in pickup.time_windows)


def test_dates_beyond_horizon_are_unavailable(calculator, now):
    slot = calculator.get_slot(date(2026, 12, 21), "delivery", now=now)

    assert slot.is_business_day is True
    assert slot.time_windows[0].reason == "cannot book more than 60 days in advance"


def test_capacity_exhausted_window():
    calculator = AvailabilityCalculator(BusinessCalendarRule(), SchedulingPolicy(window_capacity=2), LAGOS)
    now = datetime(2026, 10, 20, 9, 0, tzinfo=LAGOS)
    day = date(2026, 10, 21)

    slot = calculator.get_slot(day, "delivery", now=now, bookings={(day, "12:00"): 2, (day, "13:00"): 1})

    assert _window(slot, "12:00").reason == REASON_FULLY_BOOKED
    assert _window(slot, "13:00").available is True


def test_every_unavailable_window_has_a_reason(calculator):
    now = datetime(2026, 12, 22, 18, 0, tzinfo=LAGOS)

    slots = calculator.get_slots(date(2026, 12, 20), date(2027, 1, 10), "delivery", now=now)

    unavailable = [w for s in slots for w in s.time_windows if not w.available]
    assert unavailable
    assert all(w.reason and w.reason.strip() for w in unavailable)


def test_find_window_returns_none_for_unknown_window(calculator, now):
    assert calculator.find_window(date(2026, 10, 21), "12:30", "13:30", "delivery", now=now) is None
    assert calculator.find_window(date(2026, 10, 21), "12:00", "13:00", "delivery", now=now).available is True


def test_malformed_rule_entries_are_skipped():
    rules = BusinessCalendarRule(
        fixed_closed_dates={"13-45": "Nonsense", "12-25": "Christmas Day"},
        special_opening_times={"2026-10-21": "noon", "not-a-date": "12:00"},
        public_holidays={"2026-02-30": "Bad"},
    )
    calculator = AvailabilityCalculator(rules, SchedulingPolicy(), LAGOS)
    now = datetime(2026, 10, 20, 9, 0, tzinfo=LAGOS)

    slot = calculator.get_slot(date(2026, 10, 21), "delivery", now=now)

    assert slot.time_windows[0].start_time == "08:00"
    assert slot.time_windows[0].available is True
    assert calculator.get_slot(date(2026, 12, 25), "delivery", now=now).is_business_day is False


def test_range_is_capped():
    calculator = AvailabilityCalculator(build_calendar_rules(), SchedulingPolicy(), LAGOS)

    slots = calculator.get_slots(date(2026, 1, 1), date(2027, 12, 31), "pickup", now=datetime(2026, 1, 1, tzinfo=LAGOS))

    assert len(slots) == 100


def test_unavailable_window_requires_reason():
    with pytest.raises(ValueError):
        DeliveryTimeWindow("10:00", "11:00", available=False)
