from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CustomerIdentity:
    """Either an authenticated user or a device-scoped guest session, never both."""

    user_id: str | None = None
    guest_session_id: str | None = None

    def __post_init__(self) -> None:
        if bool(self.user_id) == bool(self.guest_session_id):
            raise ValueError("Exactly one of user_id or guest_session_id must be set")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


@dataclass(frozen=True)
class CheckoutCapabilities:
    requires_auth: bool = False
    allows_guest: bool = True
    schedules_pickup: bool = True
    terms_required: bool = True
