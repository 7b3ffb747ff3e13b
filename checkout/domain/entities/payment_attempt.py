from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class AttemptStatus(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_GATEWAY = "awaiting_gateway"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (AttemptStatus.INITIALIZING, AttemptStatus.AWAITING_GATEWAY)


@dataclass(frozen=True)
class PaymentAttempt:
    attempt_id: str
    status: AttemptStatus
    created_at: float
    order_id: str | None = None
    order_number: str | None = None
    reference: str | None = None
    gateway_url: str | None = None
    amount: Decimal | None = None
    failure_category: str | None = None
    failure_message: str | None = None


@dataclass(frozen=True)
class AttemptToken:
    """Ownership handle for one attempt slot inside a coordinator."""

    attempt_id: str
    index: int


class GatewayOutcomeKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCEL = "cancel"


@dataclass(frozen=True)
class GatewayOutcome:
    kind: GatewayOutcomeKind
    reference: str | None = None
    message: str | None = None
    declined: bool = False
