from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from checkout.application.ports.session_store import CheckoutSessionStorePort
from checkout.domain.entities.recovery_snapshot import RecoverySnapshot


class SnapshotWriter:
    """Throttles snapshot writes for one checkout session.

    At most one write per ``debounce_seconds``; a write inside the window is
    held as pending and replaced by newer ones. When an event loop is running
    the pending snapshot is written once the window closes; otherwise it goes
    out with the next write, ``flush()`` or forced write. ``force=True`` and
    ``flush()`` always reach the store.
    """

    def __init__(
        self,
        store: CheckoutSessionStorePort,
        session_id: str,
        debounce_seconds: float = 1.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._session_id = session_id
        self._debounce_seconds = debounce_seconds
        self._monotonic = monotonic
        self._last_write_at: float | None = None
        self._pending: RecoverySnapshot | None = None
        self._trailing: asyncio.TimerHandle | None = None
        self._logger = logging.getLogger(__name__)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def write(self, snapshot: RecoverySnapshot, force: bool = False) -> bool:
        """Returns True when the snapshot was persisted now."""
        now = self._monotonic()
        due = self._last_write_at is None or now - self._last_write_at >= self._debounce_seconds
        if force or due:
            self._persist(snapshot, now)
            return True
        self._pending = snapshot
        self._schedule_trailing_flush(self._debounce_seconds - (now - self._last_write_at))
        return False

    def flush(self) -> bool:
        if self._pending is None:
            return False
        self._persist(self._pending, self._monotonic())
        return True

    def discard(self) -> None:
        self._pending = None
        self._cancel_trailing_flush()

    def _schedule_trailing_flush(self, delay: float) -> None:
        if self._trailing is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._trailing = loop.call_later(max(delay, 0.0), self._trailing_flush)

    def _trailing_flush(self) -> None:
        self._trailing = None
        self.flush()

    def _cancel_trailing_flush(self) -> None:
        if self._trailing is not None:
            self._trailing.cancel()
            self._trailing = None

    def _persist(self, snapshot: RecoverySnapshot, now: float) -> None:
        self._cancel_trailing_flush()
        self._store.save_snapshot(self._session_id, snapshot)
        self._last_write_at = now
        self._pending = None
        self._logger.debug(
            "Snapshot saved",
            extra={"session_id": self._session_id, "step": snapshot.step.value},
        )
