from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from checkout.domain.entities.checkout_draft import CheckoutDraft, CheckoutStep
from checkout.domain.entities.payment_attempt import PaymentAttempt


@dataclass(frozen=True)
class RecoverySnapshot:
    draft: CheckoutDraft
    step: CheckoutStep
    delivery_fee: Decimal
    saved_at: float
    last_attempt: PaymentAttempt | None = None
