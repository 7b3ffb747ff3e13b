from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PaymentInit:
    authorization_url: str
    reference: str | None = None
    access_code: str | None = None


@dataclass(frozen=True)
class SubmittedOrder:
    order_id: str
    order_number: str | None
    payment: PaymentInit | None = None


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    status: str  # "success" | "failed" | "abandoned" | "pending"
    order_id: str | None = None
    order_number: str | None = None
    amount: Decimal | None = None
    paid_at: str | None = None
    message: str | None = None

    @property
    def is_successful(self) -> bool:
        return self.status == "success"

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"
