from __future__ import annotations

import threading

from checkout.application.ports.session_store import CheckoutSessionStorePort
from checkout.domain.entities.recovery_snapshot import RecoverySnapshot


class MemoryCheckoutSessionStore(CheckoutSessionStorePort):
    def __init__(self) -> None:
        self._snapshots: dict[str, RecoverySnapshot] = {}
        self._last_references: dict[str, str] = {}
        self._in_progress: set[str] = set()
        self._lock = threading.Lock()

    def load_snapshot(self, session_id: str) -> RecoverySnapshot | None:
        return self._snapshots.get(session_id)

    def save_snapshot(self, session_id: str, snapshot: RecoverySnapshot) -> None:
        self._snapshots[session_id] = snapshot

    def get_last_reference(self, session_id: str) -> str | None:
        return self._last_references.get(session_id)

    def set_last_reference(self, session_id: str, reference: str) -> None:
        self._last_references[session_id] = reference

    def is_checkout_in_progress(self, session_id: str) -> bool:
        return session_id in self._in_progress

    def mark_checkout_in_progress(self, session_id: str, in_progress: bool) -> None:
        if in_progress:
            self._in_progress.add(session_id)
        else:
            self._in_progress.discard(session_id)

    def find_session_by_reference(self, reference: str) -> str | None:
        for session_id, last_reference in self._last_references.items():
            if last_reference == reference:
                return session_id
        for session_id, snapshot in self._snapshots.items():
            if snapshot.last_attempt is not None and snapshot.last_attempt.reference == reference:
                return session_id
        return None

    def reset(self, session_id: str) -> None:
        with self._lock:
            self._snapshots.pop(session_id, None)
            self._last_references.pop(session_id, None)
            self._in_progress.discard(session_id)
