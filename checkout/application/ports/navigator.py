from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class NavigatorPort(ABC):
    @abstractmethod
    def navigate(self, route: str, params: dict[str, Any] | None = None) -> None:
        raise NotImplementedError
