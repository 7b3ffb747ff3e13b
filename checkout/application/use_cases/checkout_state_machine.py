from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from checkout.application.exceptions import CheckoutError, SubmissionInProgress
from checkout.application.use_cases.availability import AvailabilityCalculator
from checkout.application.use_cases.snapshot_writer import SnapshotWriter
from checkout.application.utils.totals import compute_totals
from checkout.application.utils.validators import (
    validate_cart,
    validate_contact,
    validate_fulfillment,
    validate_payment_method,
)
from checkout.domain.entities.checkout_draft import (
    STEP_ORDER,
    CartLine,
    CheckoutDraft,
    CheckoutStep,
    ChosenSchedule,
    ContactInfo,
    DeliveryAddress,
    DeliveryZone,
    FulfillmentType,
    PickupPoint,
    Totals,
)
from checkout.domain.entities.customer import CheckoutCapabilities, CustomerIdentity
from checkout.domain.entities.delivery_slot import DeliverySlot
from checkout.domain.entities.payment_attempt import PaymentAttempt
from checkout.domain.entities.recovery_snapshot import RecoverySnapshot

EDITABLE_STEPS = frozenset(STEP_ORDER)


@dataclass(frozen=True)
class TransitionResult:
    allowed: bool
    step: CheckoutStep
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StepView:
    step: CheckoutStep
    draft: CheckoutDraft
    totals: Totals
    last_error: str | None = None
    slots: list[DeliverySlot] | None = None
    requires_schedule: bool = True


class CheckoutStateMachine:
    """Owns the checkout draft and its current step.

    Field editors never move the step; ``advance`` validates the current step
    before moving forward and ``back`` is always allowed. Processing hooks are
    driven by the payment coordinator. Validation problems are returned as
    ``TransitionResult.errors`` and never raised.
    """

    def __init__(
        self,
        session_id: str,
        availability: AvailabilityCalculator,
        snapshots: SnapshotWriter,
        capabilities: CheckoutCapabilities | None = None,
        supported_payment_methods: Iterable[str] = ("paystack",),
        vat_rate_percent: float = 7.5,
        min_phone_digits: int = 10,
        schedule_days: int = 7,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_id = session_id
        self._availability = availability
        self._snapshots = snapshots
        self._capabilities = capabilities or CheckoutCapabilities()
        self._supported_payment_methods = tuple(supported_payment_methods)
        self._vat_rate_percent = vat_rate_percent
        self._min_phone_digits = min_phone_digits
        self._schedule_days = schedule_days
        self._clock = clock or availability.now
        self._logger = logging.getLogger(__name__)

        self._draft = CheckoutDraft()
        self._identity: CustomerIdentity | None = None
        self._attempt: PaymentAttempt | None = None
        self._last_error: str | None = None
        self._failure_category: str | None = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def step(self) -> CheckoutStep:
        return self._draft.step

    @property
    def draft(self) -> CheckoutDraft:
        return self._draft

    @property
    def identity(self) -> CustomerIdentity | None:
        return self._identity

    @property
    def last_attempt(self) -> PaymentAttempt | None:
        return self._attempt

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def capabilities(self) -> CheckoutCapabilities:
        return self._capabilities

    def totals(self) -> Totals:
        return compute_totals(self._draft.items, self._draft.delivery_fee, self._vat_rate_percent)

    def submission_draft(self) -> CheckoutDraft:
        """The draft as it should be sent; a schedule is dropped when this order type doesn't use one."""
        if self._requires_schedule():
            return self._draft
        return replace(self._draft, schedule=None)

    # Entry

    def start(self, identity: CustomerIdentity, profile: ContactInfo | None = None) -> TransitionResult:
        """Fresh checkout. Authenticated customers with a complete profile enter at fulfillment."""
        if self._capabilities.requires_auth and not identity.is_authenticated:
            return TransitionResult(False, self.step, {"auth": "Please sign in to continue to checkout"})
        if not identity.is_authenticated and not self._capabilities.allows_guest:
            return TransitionResult(False, self.step, {"auth": "Guest checkout is not available"})

        self._identity = identity
        contact = profile or ContactInfo()
        step = CheckoutStep.CONTACT
        if identity.is_authenticated and contact.is_complete() and not validate_contact(contact, self._min_phone_digits):
            step = CheckoutStep.FULFILLMENT

        self._draft = CheckoutDraft(contact=contact, items=self._draft.items, step=step)
        self._attempt = None
        self._last_error = None
        self._failure_category = None
        self._logger.info("Checkout started", extra={"session_id": self._session_id, "step": step.value})
        self._save(force=True)
        return TransitionResult(True, step)

    def restore(self, snapshot: RecoverySnapshot, identity: CustomerIdentity | None = None) -> TransitionResult:
        """Resume silently at the recorded step."""
        step = snapshot.step
        if step in (CheckoutStep.PROCESSING, CheckoutStep.COMPLETE):
            step = CheckoutStep.REVIEW
        self._draft = replace(snapshot.draft, step=step)
        self._attempt = snapshot.last_attempt
        if identity is not None:
            self._identity = identity
        self._last_error = None
        self._logger.info("Checkout restored", extra={"session_id": self._session_id, "step": step.value})
        return TransitionResult(True, step)

    # Field editors

    def set_cart(self, lines: Iterable[CartLine]) -> TransitionResult:
        return self._edit(items=tuple(lines))

    def set_contact(self, name: str, email: str, phone: str) -> TransitionResult:
        return self._edit(contact=ContactInfo(name=name, email=email, phone=phone))

    def choose_fulfillment(
        self,
        fulfillment_type: FulfillmentType | str,
        address: DeliveryAddress | None = None,
        delivery_zone: DeliveryZone | None = None,
        pickup_point: PickupPoint | None = None,
    ) -> TransitionResult:
        ftype = FulfillmentType(fulfillment_type)
        changes: dict = {"fulfillment_type": ftype}
        # data for the other fulfillment type is kept so switching back loses nothing
        if address is not None:
            changes["address"] = address
        if delivery_zone is not None:
            changes["delivery_zone"] = delivery_zone
        if pickup_point is not None:
            changes["pickup_point"] = pickup_point
        return self._edit(**changes)

    def choose_schedule(self, day: date, start_time: str, end_time: str) -> TransitionResult:
        if self._draft.fulfillment_type is None:
            return TransitionResult(False, self.step, {"fulfillment_type": "Please choose delivery or pickup first"})
        errors = self._check_window(ChosenSchedule(day, start_time, end_time))
        if errors:
            return TransitionResult(False, self.step, errors)
        return self._edit(schedule=ChosenSchedule(day, start_time, end_time))

    def choose_payment_method(self, method: str) -> TransitionResult:
        errors = validate_payment_method(method, self._supported_payment_methods)
        if errors:
            return TransitionResult(False, self.step, errors)
        return self._edit(payment_method=method)

    def accept_terms(self, accepted: bool) -> TransitionResult:
        return self._edit(terms_accepted=bool(accepted))

    def set_special_instructions(self, text: str) -> TransitionResult:
        return self._edit(special_instructions=text or "")

    # Navigation

    def advance(self) -> TransitionResult:
        step = self.step
        if step not in EDITABLE_STEPS or step == CheckoutStep.REVIEW:
            return TransitionResult(False, step, {"step": f"Cannot advance from {step.value}"})
        errors = self._validate_step(step)
        if errors:
            return TransitionResult(False, step, errors)
        return self._move_to(self._next_step(step))

    def back(self) -> TransitionResult:
        step = self.step
        if step == CheckoutStep.FAILED:
            return self._move_to(CheckoutStep.REVIEW)
        if step not in EDITABLE_STEPS:
            return TransitionResult(False, step, {"step": f"Cannot go back from {step.value}"})
        return self._move_to(self._previous_step(step))

    def go_to(self, target: CheckoutStep) -> TransitionResult:
        """Jump backward to an earlier step, for example to edit from review."""
        step = self.step
        if step not in EDITABLE_STEPS or target not in EDITABLE_STEPS:
            return TransitionResult(False, step, {"step": f"Cannot move to {target.value}"})
        if STEP_ORDER.index(target) > STEP_ORDER.index(step):
            return TransitionResult(False, step, {"step": "Complete the current step first"})
        return self._move_to(target)

    def view(self) -> StepView:
        self._snapshots.flush()
        slots = None
        if self.step == CheckoutStep.SCHEDULE and self._draft.fulfillment_type is not None:
            today = self._clock().astimezone(self._availability.timezone).date()
            slots = self._availability.get_slots(
                today,
                today + timedelta(days=self._schedule_days - 1),
                self._draft.fulfillment_type,
                now=self._clock(),
            )
        return StepView(
            step=self.step,
            draft=self._draft,
            totals=self.totals(),
            last_error=self._last_error,
            slots=slots,
            requires_schedule=self._requires_schedule(),
        )

    # Processing hooks

    def begin_processing(self) -> TransitionResult:
        """Gate into processing. The snapshot is written immediately, bypassing the throttle."""
        step = self.step
        if step == CheckoutStep.PROCESSING:
            raise SubmissionInProgress()
        if step != CheckoutStep.REVIEW:
            return TransitionResult(False, step, {"step": "Please review your order before paying"})
        errors = self._validate_step(CheckoutStep.REVIEW)
        if errors:
            return TransitionResult(False, step, errors)
        self._last_error = None
        self._failure_category = None
        return self._move_to(CheckoutStep.PROCESSING)

    def record_attempt(self, attempt: PaymentAttempt) -> None:
        self._attempt = attempt
        self._save(force=True)

    def submission_failed(self, error: CheckoutError) -> TransitionResult:
        self._last_error = error.user_message
        self._failure_category = error.category
        self._logger.warning(
            "Submission failed, returning to review",
            extra={"session_id": self._session_id, "category": error.category},
        )
        return self._move_to(CheckoutStep.REVIEW)

    def payment_cancelled(self) -> TransitionResult:
        self._last_error = None
        return self._move_to(CheckoutStep.REVIEW)

    def payment_pending(self) -> TransitionResult:
        """Verification could not confirm yet; the customer stays on review and may re-check."""
        self._last_error = "We are still confirming your payment. Please check again shortly."
        return self._move_to(CheckoutStep.REVIEW)

    def payment_failed(self, error: CheckoutError) -> TransitionResult:
        self._last_error = error.user_message
        self._failure_category = error.category
        self._logger.warning(
            "Payment failed",
            extra={"session_id": self._session_id, "category": error.category},
        )
        return self._move_to(CheckoutStep.FAILED)

    def retry(self) -> TransitionResult:
        if self.step != CheckoutStep.FAILED:
            return TransitionResult(False, self.step, {"step": "Nothing to retry"})
        if self._failure_category == "gateway_declined":
            return self._move_to(CheckoutStep.PAYMENT_METHOD)
        return self._move_to(CheckoutStep.REVIEW)

    def complete(self, attempt: PaymentAttempt | None = None) -> TransitionResult:
        # the session store is reset by the caller; nothing is persisted from here on
        self._snapshots.discard()
        if attempt is not None:
            self._attempt = attempt
        self._draft = replace(self._draft, step=CheckoutStep.COMPLETE)
        self._last_error = None
        return TransitionResult(True, CheckoutStep.COMPLETE)

    def reset(self) -> None:
        """Forget everything in memory, used after success or explicit abandonment."""
        self._snapshots.discard()
        self._draft = CheckoutDraft()
        self._attempt = None
        self._last_error = None
        self._failure_category = None

    # Internals

    def snapshot(self) -> RecoverySnapshot:
        return RecoverySnapshot(
            draft=self._draft,
            step=self.step,
            delivery_fee=self._draft.delivery_fee,
            saved_at=self._clock().timestamp(),
            last_attempt=self._attempt,
        )

    def _save(self, force: bool = False) -> None:
        self._snapshots.write(self.snapshot(), force=force)

    def _edit(self, **changes) -> TransitionResult:
        if self.step not in EDITABLE_STEPS:
            return TransitionResult(False, self.step, {"step": "Checkout can't be edited right now"})
        self._draft = replace(self._draft, **changes)
        self._save()
        return TransitionResult(True, self.step)

    def _move_to(self, step: CheckoutStep) -> TransitionResult:
        # step changes always reach the store; only field edits are throttled
        previous = self.step
        self._draft = replace(self._draft, step=step)
        self._save(force=True)
        if previous != step:
            self._logger.info(
                "Checkout step changed",
                extra={"session_id": self._session_id, "step": step.value, "reason": f"from={previous.value}"},
            )
        return TransitionResult(True, step)

    def _requires_schedule(self) -> bool:
        if self._draft.fulfillment_type == FulfillmentType.PICKUP:
            return self._capabilities.schedules_pickup
        return True

    def _next_step(self, step: CheckoutStep) -> CheckoutStep:
        following = STEP_ORDER[STEP_ORDER.index(step) + 1]
        if following == CheckoutStep.SCHEDULE and not self._requires_schedule():
            return CheckoutStep.PAYMENT_METHOD
        return following

    def _previous_step(self, step: CheckoutStep) -> CheckoutStep:
        index = STEP_ORDER.index(step)
        if index == 0:
            return step
        previous = STEP_ORDER[index - 1]
        if previous == CheckoutStep.SCHEDULE and not self._requires_schedule():
            return CheckoutStep.FULFILLMENT
        return previous

    def _check_window(self, schedule: ChosenSchedule | None) -> dict[str, str]:
        if schedule is None:
            return {"schedule": "Please choose a delivery date and time"}
        window = self._availability.find_window(
            schedule.date,
            schedule.start_time,
            schedule.end_time,
            self._draft.fulfillment_type or FulfillmentType.DELIVERY,
            now=self._clock(),
        )
        if window is None:
            return {"schedule": "The selected time window is not offered on that date"}
        if not window.available:
            return {"schedule": window.reason or "The selected time window is unavailable"}
        return {}

    def _validate_step(self, step: CheckoutStep) -> dict[str, str]:
        draft = self._draft
        if step == CheckoutStep.CONTACT:
            return validate_contact(draft.contact, self._min_phone_digits)
        if step == CheckoutStep.FULFILLMENT:
            return validate_fulfillment(draft)
        if step == CheckoutStep.SCHEDULE:
            return self._check_window(draft.schedule)
        if step == CheckoutStep.PAYMENT_METHOD:
            return validate_payment_method(draft.payment_method, self._supported_payment_methods)
        if step == CheckoutStep.REVIEW:
            errors: dict[str, str] = {}
            errors.update(validate_cart(draft))
            errors.update(validate_contact(draft.contact, self._min_phone_digits))
            errors.update(validate_fulfillment(draft))
            if self._requires_schedule():
                errors.update(self._check_window(draft.schedule))
            errors.update(validate_payment_method(draft.payment_method, self._supported_payment_methods))
            if self._capabilities.terms_required and not draft.terms_accepted:
                errors["terms"] = "Please accept the terms and conditions"
            return errors
        return {}
