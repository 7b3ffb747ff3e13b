from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable

from checkout.application.ports.session_store import CheckoutSessionStorePort
from checkout.application.use_cases.checkout_state_machine import EDITABLE_STEPS, CheckoutStateMachine
from checkout.application.use_cases.payment_coordinator import PaymentCoordinator, PaymentResult
from checkout.domain.entities.checkout_draft import CheckoutStep, ContactInfo
from checkout.domain.entities.customer import CustomerIdentity
from checkout.domain.entities.payment_attempt import AttemptStatus, AttemptToken


@dataclass(frozen=True)
class RecoveryDecision:
    action: str  # "fresh", "discarded", "restored", "reverified"
    step: CheckoutStep
    result: PaymentResult | None = None
    token: AttemptToken | None = None


class RecoveryManager:
    """Decides, on every checkout entry, how to treat whatever the session store holds."""

    def __init__(
        self,
        store: CheckoutSessionStorePort,
        session_id: str,
        max_age_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._session_id = session_id
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._logger = logging.getLogger(__name__)

    async def recover(
        self,
        machine: CheckoutStateMachine,
        coordinator: PaymentCoordinator,
        identity: CustomerIdentity,
        profile: ContactInfo | None = None,
    ) -> RecoveryDecision:
        snapshot = self._store.load_snapshot(self._session_id)
        if snapshot is None:
            machine.start(identity, profile)
            return RecoveryDecision("fresh", machine.step)

        attempt = snapshot.last_attempt

        # an attempt that reached the gateway is settled by the backend only, however old
        if attempt is not None and attempt.status == AttemptStatus.AWAITING_GATEWAY and attempt.reference:
            machine.restore(snapshot, identity)
            token = coordinator.adopt(attempt)
            self._logger.info(
                "Re-verifying interrupted payment",
                extra={"session_id": self._session_id, "reference": attempt.reference},
            )
            result = await coordinator.reverify(attempt.reference)
            return RecoveryDecision("reverified", machine.step, result, token)

        if attempt is not None and attempt.status == AttemptStatus.SUCCEEDED:
            return self._discard(machine, identity, profile, "payment already succeeded")

        if self._clock() - snapshot.saved_at > self._max_age_seconds:
            return self._discard(machine, identity, profile, "snapshot expired")

        self._store.mark_checkout_in_progress(self._session_id, False)
        if attempt is None:
            machine.restore(snapshot, identity)
            self._logger.info(
                "Checkout resumed",
                extra={"session_id": self._session_id, "step": machine.step.value},
            )
            return RecoveryDecision("restored", machine.step)

        # interrupted before reaching the gateway; keep the order so a retry reuses it
        if attempt.status == AttemptStatus.INITIALIZING:
            attempt = replace(attempt, status=AttemptStatus.CANCELLED)
        step = snapshot.step if snapshot.step in EDITABLE_STEPS else CheckoutStep.REVIEW
        machine.restore(replace(snapshot, step=step, last_attempt=attempt), identity)
        token = coordinator.adopt(attempt) if attempt.order_id else None
        self._logger.info(
            "Checkout resumed after unfinished payment",
            extra={"session_id": self._session_id, "step": machine.step.value, "order_id": attempt.order_id},
        )
        return RecoveryDecision("restored", machine.step, token=token)

    def _discard(
        self,
        machine: CheckoutStateMachine,
        identity: CustomerIdentity,
        profile: ContactInfo | None,
        reason: str,
    ) -> RecoveryDecision:
        self._store.reset(self._session_id)
        self._logger.info("Discarding stored checkout", extra={"session_id": self._session_id, "reason": reason})
        machine.start(identity, profile)
        return RecoveryDecision("discarded", machine.step)
