from __future__ import annotations

from typing import Any

GENERIC_MESSAGE = "Something went wrong on our side. Please try again or contact support."


class CheckoutError(RuntimeError):
    """Base for every categorized checkout failure that may reach the customer."""

    category = "unknown"
    retryable = False
    default_message = GENERIC_MESSAGE

    def __init__(self, message: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.user_message = user_message or self.default_message


class ValidationRejected(CheckoutError):
    """Raised when client-side field rules fail. Never sent to the backend."""

    category = "validation"
    default_message = "Please check the highlighted fields."

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        first = next(iter(self.errors.values()), self.default_message)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()), user_message=first)


class InvalidTransition(CheckoutError):
    """Raised when an operation is not allowed from the current checkout step."""

    category = "invalid_transition"
    default_message = "That action is not available right now."


class NetworkUnavailable(CheckoutError):
    """Raised on timeouts, connection errors and 5xx responses."""

    category = "network"
    retryable = True
    default_message = "We couldn't reach the server. Check your connection and try again."


class ServerRejected(CheckoutError):
    """Raised when the backend refuses a request on business grounds (4xx)."""

    category = "server_rejected"

    def __init__(self, server_message: str | None, status_code: int | None = None) -> None:
        self.status_code = status_code
        text = (server_message or "").strip() or "Your order could not be accepted."
        super().__init__(f"Backend rejected request ({status_code}): {text}", user_message=text)


class ResponseMalformed(CheckoutError):
    """Raised when a backend payload does not match any accepted shape."""

    category = "response_malformed"

    def __init__(self, message: str, raw: Any = None) -> None:
        self.raw = raw
        super().__init__(message)


class PaymentInitMissing(CheckoutError):
    """Raised when the order was created but no payment object came back."""

    category = "payment_init_missing"
    retryable = True
    default_message = "Your order was created but payment could not be started. Please retry payment."

    def __init__(self, order: Any) -> None:
        self.order = order
        super().__init__(f"Order {getattr(order, 'order_id', '?')} created without payment initialization")


class GatewayDeclined(CheckoutError):
    """Raised when the card or bank declines the charge."""

    category = "gateway_declined"
    default_message = "Your payment was declined. Please try a different payment method."


class GatewayCancelled(CheckoutError):
    """Raised when the customer closes the payment window."""

    category = "gateway_cancelled"
    retryable = True
    default_message = "Payment was cancelled. You can try again when ready."


class GatewayTimeout(CheckoutError):
    """Raised when the gateway gives no outcome in time."""

    category = "gateway_timeout"
    retryable = True
    default_message = "The payment took too long to complete. Please try again."


class SubmissionInProgress(CheckoutError):
    """Raised when a submission is attempted while another is outstanding."""

    category = "submission_in_progress"
    default_message = "Your order is already being processed."
