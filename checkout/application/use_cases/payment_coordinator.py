from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Callable

from checkout.application.exceptions import (
    CheckoutError,
    GatewayDeclined,
    GatewayTimeout,
    InvalidTransition,
    NetworkUnavailable,
    PaymentInitMissing,
    ResponseMalformed,
    SubmissionInProgress,
    ValidationRejected,
)
from checkout.application.ports.cart import CartPort
from checkout.application.ports.navigator import NavigatorPort
from checkout.application.ports.payment_gateway import PaymentGatewayPort
from checkout.application.ports.session_store import CheckoutSessionStorePort
from checkout.application.use_cases.checkout_state_machine import CheckoutStateMachine
from checkout.application.use_cases.order_submission import OrderSubmissionService
from checkout.domain.entities.checkout_draft import CheckoutStep
from checkout.domain.entities.order import PaymentVerification
from checkout.domain.entities.payment_attempt import (
    AttemptStatus,
    AttemptToken,
    GatewayOutcomeKind,
    PaymentAttempt,
)

CONFIRMATION_ROUTE = "/order-confirmation"
CANCEL_STATUSES = {"cancel", "cancelled", "canceled", "abandoned"}


@dataclass(frozen=True)
class PaymentResult:
    status: AttemptStatus
    attempt: PaymentAttempt | None = None
    channel: str | None = None
    duplicate: bool = False
    category: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.SUCCEEDED


class PaymentCoordinator:
    """Drives payment attempts for one checkout session.

    Attempts live in a per-instance arena and are addressed by ``AttemptToken``.
    Popup, redirect and manual re-verification all converge on one completion
    path guarded by an in-flight flag plus a processed-reference set, so the
    first terminal outcome for an attempt wins and later ones are reported as
    duplicates.
    """

    def __init__(
        self,
        session_id: str,
        machine: CheckoutStateMachine,
        submission: OrderSubmissionService,
        gateway: PaymentGatewayPort,
        cart: CartPort,
        store: CheckoutSessionStorePort,
        navigator: NavigatorPort,
        clock: Callable[[], float] = time.time,
        confirmation_route: str = CONFIRMATION_ROUTE,
    ) -> None:
        self._session_id = session_id
        self._machine = machine
        self._submission = submission
        self._gateway = gateway
        self._cart = cart
        self._store = store
        self._navigator = navigator
        self._clock = clock
        self._confirmation_route = confirmation_route
        self._logger = logging.getLogger(__name__)

        self._attempts: list[PaymentAttempt] = []
        # attempts before this index belong to a finished checkout and never donate their order
        self._checkout_start = 0
        self._completing = False
        self._processed_references: set[str] = set()
        self._idempotency_key = uuid.uuid4().hex

    @property
    def attempts(self) -> list[PaymentAttempt]:
        return list(self._attempts)

    def attempt(self, token: AttemptToken) -> PaymentAttempt:
        return self._owned(token)

    def active_token(self) -> AttemptToken | None:
        for index, attempt in enumerate(self._attempts):
            if attempt.status.is_active:
                return AttemptToken(attempt.attempt_id, index)
        return None

    async def submit(self) -> AttemptToken:
        """Create (or reuse) the order and initialize one payment.

        Rejected with SubmissionInProgress while another attempt is outstanding,
        before any remote call is made.
        """
        if self.active_token() is not None or self._completing:
            raise SubmissionInProgress()
        identity = self._machine.identity
        if identity is None:
            raise InvalidTransition("Checkout has not been started")

        gate = self._machine.begin_processing()
        if not gate.allowed:
            raise ValidationRejected(gate.errors)

        previous = self._latest_order_attempt()
        token = self._open_attempt(previous)
        self._store.mark_checkout_in_progress(self._session_id, True)
        self._logger.info(
            "Payment attempt opened",
            extra={
                "session_id": self._session_id,
                "attempt_id": token.attempt_id,
                "order_id": previous.order_id if previous else None,
            },
        )

        draft = self._machine.submission_draft()
        try:
            if previous is not None and previous.order_id:
                init = await self._submission.initialize_payment(previous.order_id, draft.contact.email)
            else:
                try:
                    order = await self._submission.submit(draft, identity, idempotency_key=self._idempotency_key)
                except PaymentInitMissing as e:
                    self._update(token, order_id=e.order.order_id, order_number=e.order.order_number)
                    raise
                self._update(token, order_id=order.order_id, order_number=order.order_number)
                init = order.payment
            if not init.reference:
                raise ResponseMalformed("payment initialization returned no reference", raw=init)
        except CheckoutError as e:
            self._fail_submission(token, e)
            raise
        except Exception as e:
            self._logger.exception(
                "Submission crashed", extra={"session_id": self._session_id, "attempt_id": token.attempt_id}
            )
            self._fail_submission(token, CheckoutError(f"{type(e).__name__}: {e}"))
            raise
        except BaseException:
            self._abort_submission(token)
            raise

        attempt = self._update(
            token,
            status=AttemptStatus.AWAITING_GATEWAY,
            reference=init.reference,
            gateway_url=init.authorization_url,
            amount=self._machine.totals().total,
        )
        self._machine.record_attempt(attempt)
        self._store.set_last_reference(self._session_id, init.reference)
        self._logger.info(
            "Awaiting gateway",
            extra={"session_id": self._session_id, "attempt_id": token.attempt_id, "reference": init.reference},
        )
        return token

    async def await_gateway(self, token: AttemptToken) -> PaymentResult:
        """Channel (a): wait for the in-page gateway. Cancelling this task counts as closing the gateway."""
        attempt = self._owned(token)
        if attempt.status != AttemptStatus.AWAITING_GATEWAY:
            return self._duplicate(attempt, "popup")
        try:
            outcome = await self._gateway.open(attempt)
        except asyncio.CancelledError:
            self._finish_cancel(token, "popup")
            raise
        except GatewayTimeout as e:
            return self._finish_failure(token, e, "popup")

        if outcome.kind == GatewayOutcomeKind.CANCEL:
            return self._finish_cancel(token, "popup")
        if outcome.kind == GatewayOutcomeKind.FAILURE:
            if outcome.declined:
                error: CheckoutError = GatewayDeclined(outcome.message)
            else:
                error = NetworkUnavailable(
                    outcome.message, user_message="The payment could not be completed. Please try again."
                )
            return self._finish_failure(token, error, "popup")
        return await self._complete_via_verify(outcome.reference or attempt.reference, "popup")

    async def handle_redirect(self, reference: str, status: str | None = None) -> PaymentResult:
        """Channel (b): the gateway redirected back with a reference."""
        if status and status.strip().lower() in CANCEL_STATUSES:
            token = self._token_for(reference)
            if token is None:
                return PaymentResult(status=AttemptStatus.CANCELLED, channel="redirect", duplicate=True)
            return self._finish_cancel(token, "redirect")
        return await self._complete_via_verify(reference, "redirect")

    async def reverify(self, reference: str | None = None) -> PaymentResult:
        """Channel (c): ask the backend what happened to a reference."""
        reference = reference or self._store.get_last_reference(self._session_id)
        if not reference:
            raise InvalidTransition("No payment reference to verify")
        return await self._complete_via_verify(reference, "reverify")

    def cancel(self, token: AttemptToken) -> PaymentResult:
        """The customer closed the gateway UI."""
        return self._finish_cancel(token, "user")

    def adopt(self, attempt: PaymentAttempt) -> AttemptToken:
        """Take ownership of an attempt restored from storage."""
        existing = self._token_for(attempt.reference) if attempt.reference else None
        if existing is not None:
            return existing
        self._attempts.append(attempt)
        token = AttemptToken(attempt.attempt_id, len(self._attempts) - 1)
        self._logger.info(
            "Attempt adopted",
            extra={"session_id": self._session_id, "attempt_id": attempt.attempt_id, "reference": attempt.reference},
        )
        return token

    def abandon(self) -> None:
        """Explicit cancellation of the whole checkout."""
        token = self.active_token()
        if token is not None:
            attempt = self._update(token, status=AttemptStatus.CANCELLED)
            if attempt.reference:
                self._processed_references.add(attempt.reference)
                self._gateway.close(attempt.reference)
        self._completing = False
        self._store.reset(self._session_id)
        self._machine.reset()
        self._checkout_start = len(self._attempts)
        self._idempotency_key = uuid.uuid4().hex
        self._logger.info("Checkout abandoned", extra={"session_id": self._session_id})

    # Completion

    async def _complete_via_verify(self, reference: str | None, channel: str) -> PaymentResult:
        if not reference:
            raise InvalidTransition("Payment reference is required")
        token = self._token_for(reference)
        if reference in self._processed_references or self._completing:
            attempt = self._attempts[token.index] if token is not None else None
            self._logger.info(
                "Ignoring duplicate completion",
                extra={"session_id": self._session_id, "reference": reference, "channel": channel},
            )
            return PaymentResult(
                status=attempt.status if attempt else AttemptStatus.AWAITING_GATEWAY,
                attempt=attempt,
                channel=channel,
                duplicate=True,
            )

        self._completing = True
        if token is None:
            token = self.adopt(
                PaymentAttempt(
                    attempt_id=self._new_attempt_id(),
                    status=AttemptStatus.AWAITING_GATEWAY,
                    created_at=self._clock(),
                    reference=reference,
                )
            )

        try:
            verification = await self._submission.verify(reference)
        except CheckoutError as e:
            self._logger.warning(
                "Verification unavailable",
                extra={"session_id": self._session_id, "reference": reference, "category": e.category},
            )
            return PaymentResult(
                status=self._attempts[token.index].status,
                attempt=self._attempts[token.index],
                channel=channel,
                category=e.category,
                message=e.user_message,
            )
        finally:
            # released however the verification ends, cancellation included
            self._completing = False

        # abandoned while the verification was in flight
        if reference in self._processed_references:
            return self._duplicate(self._attempts[token.index], channel)
        if verification.is_successful:
            return self._succeed(token, verification, channel)
        if verification.is_pending:
            attempt = self._attempts[token.index]
            if self._machine.step == CheckoutStep.PROCESSING:
                self._machine.payment_pending()
            return PaymentResult(
                status=attempt.status,
                attempt=attempt,
                channel=channel,
                message="Payment is still being confirmed.",
            )
        if verification.status == "abandoned":
            return self._finish_cancel(token, channel)
        return self._finish_failure(token, GatewayDeclined(verification.message), channel)

    def _succeed(self, token: AttemptToken, verification: PaymentVerification, channel: str) -> PaymentResult:
        current = self._attempts[token.index]
        attempt = self._update(
            token,
            status=AttemptStatus.SUCCEEDED,
            order_id=verification.order_id or current.order_id,
            order_number=verification.order_number or current.order_number,
            amount=verification.amount if verification.amount is not None else current.amount,
        )
        self._processed_references.add(verification.reference)
        if current.reference:
            self._processed_references.add(current.reference)

        # ordering matters: confirmed -> cart cleared -> stored state cleared -> navigate
        self._cart.clear()
        self._store.reset(self._session_id)
        self._machine.complete(attempt)
        self._logger.info(
            "Payment succeeded",
            extra={
                "session_id": self._session_id,
                "attempt_id": attempt.attempt_id,
                "order_id": attempt.order_id,
                "reference": verification.reference,
                "channel": channel,
            },
        )
        self._navigator.navigate(
            self._confirmation_route,
            {"order_number": attempt.order_number, "reference": verification.reference},
        )
        self._gateway.close(verification.reference)
        self._completing = False
        self._checkout_start = len(self._attempts)
        self._idempotency_key = uuid.uuid4().hex
        return PaymentResult(status=AttemptStatus.SUCCEEDED, attempt=attempt, channel=channel)

    def _finish_cancel(self, token: AttemptToken, channel: str) -> PaymentResult:
        attempt = self._owned(token)
        if not attempt.status.is_active or self._completing:
            return self._duplicate(attempt, channel)
        attempt = self._update(token, status=AttemptStatus.CANCELLED)
        if attempt.reference:
            self._processed_references.add(attempt.reference)
            self._gateway.close(attempt.reference)
        self._completing = False
        self._store.mark_checkout_in_progress(self._session_id, False)
        self._machine.record_attempt(attempt)
        self._machine.payment_cancelled()
        self._logger.info(
            "Payment cancelled",
            extra={"session_id": self._session_id, "attempt_id": attempt.attempt_id, "channel": channel},
        )
        return PaymentResult(status=AttemptStatus.CANCELLED, attempt=attempt, channel=channel)

    def _finish_failure(self, token: AttemptToken, error: CheckoutError, channel: str) -> PaymentResult:
        attempt = self._owned(token)
        if not attempt.status.is_active or self._completing:
            return self._duplicate(attempt, channel)
        attempt = self._update(
            token,
            status=AttemptStatus.FAILED,
            failure_category=error.category,
            failure_message=error.user_message,
        )
        if attempt.reference:
            self._processed_references.add(attempt.reference)
            self._gateway.close(attempt.reference)
        self._completing = False
        self._store.mark_checkout_in_progress(self._session_id, False)
        self._machine.record_attempt(attempt)
        self._machine.payment_failed(error)
        return PaymentResult(
            status=AttemptStatus.FAILED,
            attempt=attempt,
            channel=channel,
            category=error.category,
            message=error.user_message,
        )

    def _fail_submission(self, token: AttemptToken, error: CheckoutError) -> None:
        attempt = self._update(
            token,
            status=AttemptStatus.FAILED,
            failure_category=error.category,
            failure_message=error.user_message,
        )
        self._store.mark_checkout_in_progress(self._session_id, False)
        self._machine.record_attempt(attempt)
        self._machine.submission_failed(error)

    def _abort_submission(self, token: AttemptToken) -> None:
        """The submitting task was cancelled; the draft goes back to review and any order stays reusable."""
        attempt = self._update(token, status=AttemptStatus.CANCELLED)
        self._store.mark_checkout_in_progress(self._session_id, False)
        self._machine.record_attempt(attempt)
        self._machine.payment_cancelled()
        self._logger.info(
            "Submission interrupted",
            extra={"session_id": self._session_id, "attempt_id": attempt.attempt_id, "order_id": attempt.order_id},
        )

    # Arena

    def _open_attempt(self, previous: PaymentAttempt | None) -> AttemptToken:
        attempt = PaymentAttempt(
            attempt_id=self._new_attempt_id(),
            status=AttemptStatus.INITIALIZING,
            created_at=self._clock(),
            order_id=previous.order_id if previous else None,
            order_number=previous.order_number if previous else None,
        )
        self._attempts.append(attempt)
        token = AttemptToken(attempt.attempt_id, len(self._attempts) - 1)
        self._machine.record_attempt(attempt)
        return token

    def _owned(self, token: AttemptToken) -> PaymentAttempt:
        if not 0 <= token.index < len(self._attempts) or self._attempts[token.index].attempt_id != token.attempt_id:
            raise InvalidTransition(f"Unknown payment attempt {token.attempt_id}")
        return self._attempts[token.index]

    def _update(self, token: AttemptToken, **changes) -> PaymentAttempt:
        attempt = replace(self._owned(token), **changes)
        self._attempts[token.index] = attempt
        return attempt

    def _token_for(self, reference: str | None) -> AttemptToken | None:
        if not reference:
            return None
        for index in range(len(self._attempts) - 1, -1, -1):
            if self._attempts[index].reference == reference:
                return AttemptToken(self._attempts[index].attempt_id, index)
        return None

    def _latest_order_attempt(self) -> PaymentAttempt | None:
        for attempt in reversed(self._attempts[self._checkout_start :]):
            if attempt.order_id and attempt.status != AttemptStatus.SUCCEEDED:
                return attempt
        return None

    def _duplicate(self, attempt: PaymentAttempt, channel: str) -> PaymentResult:
        return PaymentResult(status=attempt.status, attempt=attempt, channel=channel, duplicate=True)

    def _new_attempt_id(self) -> str:
        return f"att_{uuid.uuid4().hex[:16]}"
