from __future__ import annotations

from abc import ABC, abstractmethod

from checkout.domain.entities.payment_attempt import GatewayOutcome, PaymentAttempt


class PaymentGatewayPort(ABC):
    @abstractmethod
    async def open(self, attempt: PaymentAttempt) -> GatewayOutcome:
        """Present the gateway for an attempt and wait for its single outcome.

        Cancelling the awaiting task must close the gateway UI.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self, reference: str) -> None:
        raise NotImplementedError
