from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class DeliveryTimeWindow:
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    available: bool
    reason: str | None = None

    def __post_init__(self) -> None:
        if not self.available and not (self.reason and self.reason.strip()):
            raise ValueError(f"Unavailable window {self.start_time}-{self.end_time} must carry a reason")


@dataclass(frozen=True)
class DeliverySlot:
    date: date
    is_business_day: bool
    is_holiday: bool = False
    holiday_name: str | None = None
    time_windows: tuple[DeliveryTimeWindow, ...] = ()

    @property
    def available_windows(self) -> list[DeliveryTimeWindow]:
        return [w for w in self.time_windows if w.available]
