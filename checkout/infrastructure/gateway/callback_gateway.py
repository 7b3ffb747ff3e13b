from __future__ import annotations

import asyncio
import logging

from checkout.application.exceptions import GatewayTimeout
from checkout.application.ports.payment_gateway import PaymentGatewayPort
from checkout.domain.entities.payment_attempt import GatewayOutcome, GatewayOutcomeKind, PaymentAttempt


class CallbackPaymentGateway(PaymentGatewayPort):
    """Turns the gateway's client-side callbacks into one awaitable outcome per reference.

    The storefront relays the popup's success/failure/close events to
    ``deliver``; whoever is awaiting ``open`` for that reference resumes.
    """

    def __init__(self, timeout_seconds: float = 900.0) -> None:
        self._timeout_seconds = timeout_seconds
        self._waiters: dict[str, asyncio.Future[GatewayOutcome]] = {}
        self._early: dict[str, GatewayOutcome] = {}
        self._logger = logging.getLogger(__name__)

    async def open(self, attempt: PaymentAttempt) -> GatewayOutcome:
        reference = attempt.reference or ""
        if reference in self._early:
            return self._early.pop(reference)

        future: asyncio.Future[GatewayOutcome] = asyncio.get_running_loop().create_future()
        self._waiters[reference] = future
        self._logger.info("Gateway opened", extra={"reference": reference, "attempt_id": attempt.attempt_id})
        try:
            return await asyncio.wait_for(future, timeout=self._timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GatewayTimeout(f"No gateway outcome for {reference} after {self._timeout_seconds}s") from e
        finally:
            if self._waiters.get(reference) is future:
                del self._waiters[reference]

    def deliver(self, reference: str, outcome: GatewayOutcome) -> bool:
        """Returns False when nobody was waiting; the outcome is then kept for the next ``open``."""
        future = self._waiters.get(reference)
        if future is None or future.done():
            self._early[reference] = outcome
            return False
        future.set_result(outcome)
        return True

    def close(self, reference: str) -> None:
        self._early.pop(reference, None)
        future = self._waiters.pop(reference, None)
        if future is not None and not future.done():
            future.set_result(GatewayOutcome(GatewayOutcomeKind.CANCEL, reference=reference))

    def is_waiting(self, reference: str) -> bool:
        future = self._waiters.get(reference)
        return future is not None and not future.done()
