from __future__ import annotations

import logging
from typing import Any

from checkout.application.ports.navigator import NavigatorPort


class RecordingNavigator(NavigatorPort):
    """Keeps the navigation requests so the HTTP layer can hand the route back to the client."""

    def __init__(self) -> None:
        self.history: list[tuple[str, dict[str, Any]]] = []
        self._logger = logging.getLogger(__name__)

    @property
    def last(self) -> tuple[str, dict[str, Any]] | None:
        return self.history[-1] if self.history else None

    def navigate(self, route: str, params: dict[str, Any] | None = None) -> None:
        self.history.append((route, dict(params or {})))
        self._logger.info("Navigate", extra={"reason": route})
