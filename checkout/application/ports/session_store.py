from __future__ import annotations

from abc import ABC, abstractmethod

from checkout.domain.entities.recovery_snapshot import RecoverySnapshot


class CheckoutSessionStorePort(ABC):
    @abstractmethod
    def load_snapshot(self, session_id: str) -> RecoverySnapshot | None:
        raise NotImplementedError

    @abstractmethod
    def save_snapshot(self, session_id: str, snapshot: RecoverySnapshot) -> None:
        """Replace the whole snapshot in one write."""
        raise NotImplementedError

    @abstractmethod
    def get_last_reference(self, session_id: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set_last_reference(self, session_id: str, reference: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_checkout_in_progress(self, session_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def mark_checkout_in_progress(self, session_id: str, in_progress: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    def find_session_by_reference(self, reference: str) -> str | None:
        """Resolve the checkout session that owns a payment reference."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, session_id: str) -> None:
        """Clear snapshot, last reference and in-progress marker together."""
        raise NotImplementedError
