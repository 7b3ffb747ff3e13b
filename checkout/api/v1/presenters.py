from __future__ import annotations

from dataclasses import asdict

from checkout.api.v1.schemas import (
    AttemptSchema,
    CheckoutViewSchema,
    DeliverySlotSchema,
    PaymentResultSchema,
    TimeWindowSchema,
    TotalsSchema,
    TransitionResponseSchema,
)
from checkout.application.use_cases.checkout_state_machine import TransitionResult
from checkout.application.use_cases.payment_coordinator import PaymentResult
from checkout.domain.entities.delivery_slot import DeliverySlot
from checkout.domain.entities.payment_attempt import PaymentAttempt
from checkout.wiring.dependencies import CheckoutSession


def slot_schema(slot: DeliverySlot) -> DeliverySlotSchema:
    return DeliverySlotSchema(
        date=slot.date,
        is_business_day=slot.is_business_day,
        is_holiday=slot.is_holiday,
        holiday_name=slot.holiday_name,
        time_windows=[
            TimeWindowSchema(start_time=w.start_time, end_time=w.end_time, available=w.available, reason=w.reason)
            for w in slot.time_windows
        ],
    )


def attempt_schema(attempt: PaymentAttempt | None) -> AttemptSchema | None:
    if attempt is None:
        return None
    return AttemptSchema(
        attempt_id=attempt.attempt_id,
        status=attempt.status.value,
        order_id=attempt.order_id,
        order_number=attempt.order_number,
        reference=attempt.reference,
        gateway_url=attempt.gateway_url,
    )


def transition_schema(result: TransitionResult) -> TransitionResponseSchema:
    return TransitionResponseSchema(allowed=result.allowed, step=result.step.value, errors=dict(result.errors))


def view_schema(session: CheckoutSession) -> CheckoutViewSchema:
    view = session.machine.view()
    return CheckoutViewSchema(
        session_id=session.session_id,
        step=view.step.value,
        draft=asdict(view.draft),
        totals=TotalsSchema(
            subtotal=view.totals.subtotal,
            delivery_fee=view.totals.delivery_fee,
            tax=view.totals.tax,
            total=view.totals.total,
        ),
        requires_schedule=view.requires_schedule,
        last_error=view.last_error,
        slots=[slot_schema(s) for s in view.slots] if view.slots is not None else None,
        attempt=attempt_schema(session.machine.last_attempt),
    )


def payment_result_schema(result: PaymentResult, session: CheckoutSession) -> PaymentResultSchema:
    redirect_to = None
    if result.succeeded and not result.duplicate and session.navigator.last is not None:
        redirect_to = session.navigator.last[0]
    attempt = result.attempt
    return PaymentResultSchema(
        status=result.status.value,
        duplicate=result.duplicate,
        channel=result.channel,
        category=result.category,
        message=result.message,
        order_number=attempt.order_number if attempt else None,
        reference=attempt.reference if attempt else None,
        redirect_to=redirect_to,
    )
