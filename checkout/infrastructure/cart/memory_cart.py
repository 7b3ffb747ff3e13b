from __future__ import annotations

from typing import Iterable

from checkout.application.ports.cart import CartPort
from checkout.domain.entities.checkout_draft import CartLine


class MemoryCart(CartPort):
    def __init__(self, lines: Iterable[CartLine] | None = None) -> None:
        self._lines: list[CartLine] = list(lines or [])

    def items(self) -> list[CartLine]:
        return list(self._lines)

    def replace(self, lines: Iterable[CartLine]) -> None:
        self._lines = list(lines)

    def clear(self) -> None:
        self._lines = []
