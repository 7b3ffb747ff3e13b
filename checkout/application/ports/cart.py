from __future__ import annotations

from abc import ABC, abstractmethod

from checkout.domain.entities.checkout_draft import CartLine


class CartPort(ABC):
    @abstractmethod
    def items(self) -> list[CartLine]:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError
