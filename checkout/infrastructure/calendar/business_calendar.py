from __future__ import annotations

from checkout.domain.entities.calendar_rules import (
    BusinessCalendarRule,
    BusinessHours,
    FulfillmentRestriction,
    SchedulingPolicy,
)

# Recurring closures, "MM-DD"
FIXED_CLOSED_DATES = {
    "12-25": "Christmas Day",
    "12-26": "Boxing Day",
    "01-01": "New Year's Day",
}

# Late openings on specific dates, "YYYY-MM-DD" -> "HH:MM"
SPECIAL_OPENING_TIMES = {
    "2026-01-08": "12:00",
    "2027-01-08": "12:00",
}

# Ordering for the following day closes at midnight when this month-day begins
PRE_ORDER_CUTOFFS = {
    "12-23": "Christmas Eve pre-orders closed at midnight on December 23",
    "12-30": "New Year's Eve pre-orders closed at midnight on December 30",
}

FULFILLMENT_DISABLED_DATES = {
    "2026-12-31": FulfillmentRestriction("delivery", "Delivery unavailable on New Year's Eve, pickup only"),
    "2027-12-31": FulfillmentRestriction("delivery", "Delivery unavailable on New Year's Eve, pickup only"),
}

PUBLIC_HOLIDAYS = {
    "2026-10-01": "Independence Day",
    "2027-05-27": "Children's Day",
    "2027-06-12": "Democracy Day",
}

BUSINESS_HOURS = {
    0: BusinessHours("08:00", "19:00"),
    1: BusinessHours("08:00", "19:00"),
    2: BusinessHours("08:00", "19:00"),
    3: BusinessHours("08:00", "19:00"),
    4: BusinessHours("08:00", "19:00"),
    5: BusinessHours("08:00", "19:00"),
    6: BusinessHours("10:00", "16:00"),
}


def build_calendar_rules() -> BusinessCalendarRule:
    return BusinessCalendarRule(
        fixed_closed_dates=dict(FIXED_CLOSED_DATES),
        special_opening_times=dict(SPECIAL_OPENING_TIMES),
        pre_order_cutoffs=dict(PRE_ORDER_CUTOFFS),
        fulfillment_disabled_dates=dict(FULFILLMENT_DISABLED_DATES),
        public_holidays=dict(PUBLIC_HOLIDAYS),
    )


def build_scheduling_policy(
    lead_time_minutes: int,
    slot_minutes: int,
    max_advance_days: int,
    window_capacity: int = 0,
) -> SchedulingPolicy:
    return SchedulingPolicy(
        lead_time_minutes=lead_time_minutes,
        slot_minutes=slot_minutes,
        max_advance_days=max_advance_days,
        window_capacity=window_capacity,
        business_hours=dict(BUSINESS_HOURS),
    )
