from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Mapping
from zoneinfo import ZoneInfo

from checkout.application.utils.validators import parse_hhmm
from checkout.domain.entities.calendar_rules import (
    BusinessCalendarRule,
    FulfillmentRestriction,
    SchedulingPolicy,
)
from checkout.domain.entities.checkout_draft import FulfillmentType
from checkout.domain.entities.delivery_slot import DeliverySlot, DeliveryTimeWindow

MAX_RANGE_DAYS = 100

REASON_PASSED = "time slot has passed"
REASON_LEAD_TIME = "insufficient lead time"
REASON_CUTOFF = "pre-order cutoff passed"
REASON_FULLY_BOOKED = "capacity exhausted for this window"

# (date, "HH:MM") -> orders already booked in that window
Bookings = Mapping[tuple[date, str], int]


def _format_minutes(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


class AvailabilityCalculator:
    """Derives bookable delivery/pickup windows from static business rules.

    Pure: the only input that varies between calls is ``now``. Malformed rule
    entries are dropped once at construction with a warning and never raise.
    """

    def __init__(
        self,
        rules: BusinessCalendarRule,
        policy: SchedulingPolicy,
        timezone: ZoneInfo,
    ) -> None:
        self._timezone = timezone
        self._logger = logging.getLogger(__name__)
        self._policy = policy

        self._slot_minutes = policy.slot_minutes
        if self._slot_minutes <= 0:
            self._logger.warning("Invalid slot duration, using 60 minutes", extra={"reason": str(policy.slot_minutes)})
            self._slot_minutes = 60

        self._closed = self._parse_month_day_table(rules.fixed_closed_dates, "fixed_closed_dates")
        self._cutoffs = self._parse_month_day_table(rules.pre_order_cutoffs, "pre_order_cutoffs")
        self._holidays = self._parse_date_table(rules.public_holidays, "public_holidays")
        self._disabled: dict[date, FulfillmentRestriction] = self._parse_date_table(
            rules.fulfillment_disabled_dates, "fulfillment_disabled_dates"
        )
        self._special_openings: dict[date, int] = {}
        for day, value in self._parse_date_table(rules.special_opening_times, "special_opening_times").items():
            try:
                hour, minute = parse_hhmm(value)
            except ValueError:
                self._logger.warning("Skipping malformed special opening time", extra={"reason": f"{day}={value!r}"})
                continue
            self._special_openings[day] = hour * 60 + minute

        self._hours: dict[int, tuple[int, int] | None] = {}
        for weekday in range(7):
            entry = policy.business_hours.get(weekday)
            if entry is None or not entry.is_open:
                self._hours[weekday] = None
                continue
            try:
                open_h, open_m = parse_hhmm(entry.open_time)
                close_h, close_m = parse_hhmm(entry.close_time)
            except ValueError:
                self._logger.warning("Malformed business hours, treating day as closed", extra={"reason": f"weekday={weekday}"})
                self._hours[weekday] = None
                continue
            self._hours[weekday] = (open_h * 60 + open_m, close_h * 60 + close_m)

    @property
    def timezone(self) -> ZoneInfo:
        return self._timezone

    @property
    def policy(self) -> SchedulingPolicy:
        return self._policy

    def now(self) -> datetime:
        return datetime.now(self._timezone)

    def get_slots(
        self,
        range_start: date,
        range_end: date,
        fulfillment_type: FulfillmentType | str,
        now: datetime | None = None,
        bookings: Bookings | None = None,
    ) -> list[DeliverySlot]:
        """One DeliverySlot per calendar date in [range_start, range_end]."""
        current_time = self._localize(now)
        ftype = FulfillmentType(fulfillment_type)
        slots: list[DeliverySlot] = []
        day = range_start
        for _ in range(MAX_RANGE_DAYS):
            if day > range_end:
                break
            slots.append(self._evaluate_date(day, ftype, current_time, bookings or {}))
            day += timedelta(days=1)
        return slots

    def get_slot(
        self,
        day: date,
        fulfillment_type: FulfillmentType | str,
        now: datetime | None = None,
        bookings: Bookings | None = None,
    ) -> DeliverySlot:
        return self._evaluate_date(day, FulfillmentType(fulfillment_type), self._localize(now), bookings or {})

    def find_window(
        self,
        day: date,
        start_time: str,
        end_time: str,
        fulfillment_type: FulfillmentType | str,
        now: datetime | None = None,
        bookings: Bookings | None = None,
    ) -> DeliveryTimeWindow | None:
        """Fresh evaluation of a single window, or None if that window does not exist on the day."""
        slot = self.get_slot(day, fulfillment_type, now=now, bookings=bookings)
        for window in slot.time_windows:
            if window.start_time == start_time and window.end_time == end_time:
                return window
        return None

    def _evaluate_date(
        self,
        day: date,
        fulfillment_type: FulfillmentType,
        now: datetime,
        bookings: Bookings,
    ) -> DeliverySlot:
        # (a) closures win over everything, including special openings
        if (day.month, day.day) in self._closed or day in self._holidays:
            closed_name = self._closed.get((day.month, day.day)) or self._holidays.get(day) or "Closed"
            return DeliverySlot(date=day, is_business_day=False, is_holiday=True, holiday_name=closed_name)

        hours = self._hours.get(day.weekday())
        if hours is None:
            return DeliverySlot(date=day, is_business_day=False)

        day_reason = self._disabled_reason(day, fulfillment_type) or self._horizon_reason(day, now)
        cutoff = self._cutoff(day)
        earliest = self._special_openings.get(day)
        lead_boundary = now + timedelta(minutes=self._policy.lead_time_minutes)
        capacity = self._policy.window_capacity

        open_minutes, close_minutes = hours
        windows: list[DeliveryTimeWindow] = []
        start = open_minutes
        while start + self._slot_minutes <= close_minutes:
            end = start + self._slot_minutes
            label = _format_minutes(start)
            starts_at = datetime.combine(day, time(start // 60, start % 60), tzinfo=self._timezone)

            reason = day_reason
            if reason is None and cutoff is not None:
                cutoff_instant, cutoff_reason = cutoff
                if now >= cutoff_instant and starts_at > cutoff_instant:
                    reason = cutoff_reason
            if reason is None and earliest is not None and start < earliest:
                reason = f"opens at {_format_minutes(earliest)} on this date"
            if reason is None and starts_at < now:
                reason = REASON_PASSED
            if reason is None and starts_at < lead_boundary:
                reason = REASON_LEAD_TIME
            if reason is None and capacity > 0 and bookings.get((day, label), 0) >= capacity:
                reason = REASON_FULLY_BOOKED

            windows.append(DeliveryTimeWindow(label, _format_minutes(end), reason is None, reason))
            start = end

        return DeliverySlot(date=day, is_business_day=True, time_windows=tuple(windows))

    def _disabled_reason(self, day: date, fulfillment_type: FulfillmentType) -> str | None:
        restriction = self._disabled.get(day)
        if restriction is None:
            return None
        if restriction.fulfillment_type in ("all", fulfillment_type.value):
            return restriction.reason or f"{fulfillment_type.value} unavailable on this date"
        return None

    def _horizon_reason(self, day: date, now: datetime) -> str | None:
        horizon = (now + timedelta(days=self._policy.max_advance_days)).date()
        if day > horizon:
            return f"cannot book more than {self._policy.max_advance_days} days in advance"
        return None

    def _cutoff(self, day: date) -> tuple[datetime, str] | None:
        """Cutoff on the previous calendar day blocks this day from that day's midnight."""
        previous = day - timedelta(days=1)
        reason = self._cutoffs.get((previous.month, previous.day))
        if reason is None:
            return None
        instant = datetime.combine(previous, time(0, 0), tzinfo=self._timezone)
        return instant, reason or REASON_CUTOFF

    def _localize(self, now: datetime | None) -> datetime:
        if now is None:
            return self.now()
        if now.tzinfo is None:
            return now.replace(tzinfo=self._timezone)
        return now.astimezone(self._timezone)

    def _parse_month_day_table(self, table: Mapping[str, str], name: str) -> dict[tuple[int, int], str]:
        parsed: dict[tuple[int, int], str] = {}
        for key, value in table.items():
            try:
                # leap year so "02-29" is accepted
                month_day = datetime.strptime(f"2000-{key}", "%Y-%m-%d")
            except (TypeError, ValueError):
                self._logger.warning("Skipping malformed calendar entry", extra={"reason": f"{name}:{key!r}"})
                continue
            parsed[(month_day.month, month_day.day)] = value
        return parsed

    def _parse_date_table(self, table: Mapping[str, object], name: str) -> dict:
        parsed: dict[date, object] = {}
        for key, value in table.items():
            try:
                parsed[date.fromisoformat(key)] = value
            except (TypeError, ValueError):
                self._logger.warning("Skipping malformed calendar entry", extra={"reason": f"{name}:{key!r}"})
        return parsed
