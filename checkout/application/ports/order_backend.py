from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class OrderBackendPort(ABC):
    """Remote order/payment operations. Adapters return the raw decoded payload."""

    @abstractmethod
    async def create_order(self, payload: dict[str, Any]) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def initialize_payment(self, order_id: str, email: str, callback_url: str | None = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def verify_payment(self, reference: str) -> Any:
        raise NotImplementedError
