from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class FulfillmentRestriction:
    fulfillment_type: str  # "delivery" | "pickup" | "all"
    reason: str


@dataclass(frozen=True)
class BusinessHours:
    open_time: str = "08:00"  # HH:MM
    close_time: str = "19:00"  # HH:MM
    is_open: bool = True


@dataclass(frozen=True)
class BusinessCalendarRule:
    # Keys are kept as raw strings so a malformed entry can be skipped when evaluated
    fixed_closed_dates: Mapping[str, str] = field(default_factory=dict)  # "MM-DD" -> holiday name
    special_opening_times: Mapping[str, str] = field(default_factory=dict)  # "YYYY-MM-DD" -> "HH:MM"
    pre_order_cutoffs: Mapping[str, str] = field(default_factory=dict)  # "MM-DD" -> reason
    fulfillment_disabled_dates: Mapping[str, FulfillmentRestriction] = field(default_factory=dict)  # "YYYY-MM-DD"
    public_holidays: Mapping[str, str] = field(default_factory=dict)  # "YYYY-MM-DD" -> holiday name


def default_business_hours() -> dict[int, BusinessHours]:
    """Monday=0 .. Sunday=6."""
    hours = {weekday: BusinessHours("08:00", "19:00") for weekday in range(6)}
    hours[6] = BusinessHours("10:00", "16:00")
    return hours


@dataclass(frozen=True)
class SchedulingPolicy:
    lead_time_minutes: int = 90
    slot_minutes: int = 60
    max_advance_days: int = 60
    window_capacity: int = 0  # 0 means unlimited
    business_hours: Mapping[int, BusinessHours] = field(default_factory=default_business_hours)
