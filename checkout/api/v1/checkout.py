from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from checkout.api.v1.presenters import (
    attempt_schema,
    payment_result_schema,
    slot_schema,
    transition_schema,
    view_schema,
)
from checkout.api.v1.schemas import (
    AttemptSchema,
    CartLineSchema,
    CartRequestSchema,
    CheckoutViewSchema,
    ContactSchema,
    DeliverySlotSchema,
    FulfillmentRequestSchema,
    GoToRequestSchema,
    PaymentMethodRequestSchema,
    PaymentResultSchema,
    ScheduleRequestSchema,
    StartRequestSchema,
    StartResponseSchema,
    TermsRequestSchema,
    TransitionResponseSchema,
)
from checkout.application.exceptions import InvalidTransition
from checkout.application.use_cases.availability import AvailabilityCalculator
from checkout.domain.entities.checkout_draft import (
    CartLine,
    CheckoutStep,
    ContactInfo,
    DeliveryAddress,
    DeliveryZone,
    FulfillmentType,
    PickupPoint,
)
from checkout.domain.entities.customer import CustomerIdentity
from checkout.wiring.dependencies import (
    CheckoutSession,
    drop_checkout_session,
    get_availability_calculator,
    get_checkout_session,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _cart_lines(items: list[CartLineSchema]) -> list[CartLine]:
    return [
        CartLine(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            customizations=item.customizations,
        )
        for item in items
    ]


def _log_gateway_task(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Gateway wait failed", exc_info=error)


@router.get("/availability", response_model=list[DeliverySlotSchema])
def get_availability(
    start: date | None = Query(None),
    end: date | None = Query(None),
    fulfillment_type: FulfillmentType = Query(FulfillmentType.DELIVERY),
    calculator: AvailabilityCalculator = Depends(get_availability_calculator),
):
    first = start or calculator.now().date()
    last = end or first + timedelta(days=6)
    if last < first:
        raise HTTPException(status_code=400, detail="end must not be before start")
    return [slot_schema(slot) for slot in calculator.get_slots(first, last, fulfillment_type)]


@router.post("/checkout/{session_id}/start", response_model=StartResponseSchema)
async def start_checkout(session_id: str, req: StartRequestSchema):
    session = get_checkout_session(session_id)
    try:
        identity = CustomerIdentity(
            user_id=req.user_id,
            guest_session_id=None if req.user_id else (req.guest_session_id or session_id),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if req.items:
        session.cart.replace(_cart_lines(req.items))
    profile = ContactInfo(**req.profile.model_dump()) if req.profile else None

    decision = await session.recovery.recover(session.machine, session.coordinator, identity, profile)
    if decision.action in ("fresh", "discarded") or req.items:
        session.machine.set_cart(session.cart.items())
    elif not session.cart.items():
        session.cart.replace(session.machine.draft.items)

    return StartResponseSchema(
        action=decision.action,
        view=view_schema(session),
        payment=payment_result_schema(decision.result, session) if decision.result else None,
    )


@router.get("/checkout/{session_id}", response_model=CheckoutViewSchema)
def get_checkout(session: CheckoutSession = Depends(get_checkout_session)):
    return view_schema(session)


@router.put("/checkout/{session_id}/cart", response_model=TransitionResponseSchema)
def update_cart(req: CartRequestSchema, session: CheckoutSession = Depends(get_checkout_session)):
    lines = _cart_lines(req.items)
    result = session.machine.set_cart(lines)
    if result.allowed:
        session.cart.replace(lines)
    return transition_schema(result)


@router.put("/checkout/{session_id}/contact", response_model=TransitionResponseSchema)
def update_contact(req: ContactSchema, session: CheckoutSession = Depends(get_checkout_session)):
    return transition_schema(session.machine.set_contact(req.name, req.email, req.phone))


@router.put("/checkout/{session_id}/fulfillment", response_model=TransitionResponseSchema)
def update_fulfillment(req: FulfillmentRequestSchema, session: CheckoutSession = Depends(get_checkout_session)):
    result = session.machine.choose_fulfillment(
        req.fulfillment_type,
        address=DeliveryAddress(**req.address.model_dump()) if req.address else None,
        delivery_zone=(
            DeliveryZone(req.delivery_zone.id, req.delivery_zone.name, req.delivery_zone.fee)
            if req.delivery_zone
            else None
        ),
        pickup_point=(
            PickupPoint(req.pickup_point.id, req.pickup_point.name, req.pickup_point.address)
            if req.pickup_point
            else None
        ),
    )
    return transition_schema(result)


@router.put("/checkout/{session_id}/schedule", response_model=TransitionResponseSchema)
def update_schedule(req: ScheduleRequestSchema, session: CheckoutSession = Depends(get_checkout_session)):
    return transition_schema(session.machine.choose_schedule(req.date, req.start_time, req.end_time))


@router.put("/checkout/{session_id}/payment-method", response_model=TransitionResponseSchema)
def update_payment_method(req: PaymentMethodRequestSchema, session: CheckoutSession = Depends(get_checkout_session)):
    return transition_schema(session.machine.choose_payment_method(req.method))


@router.put("/checkout/{session_id}/terms", response_model=TransitionResponseSchema)
def update_terms(req: TermsRequestSchema, session: CheckoutSession = Depends(get_checkout_session)):
    if req.special_instructions is not None:
        session.machine.set_special_instructions(req.special_instructions)
    return transition_schema(session.machine.accept_terms(req.accepted))


@router.post("/checkout/{session_id}/advance", response_model=TransitionResponseSchema)
def advance(session: CheckoutSession = Depends(get_checkout_session)):
    return transition_schema(session.machine.advance())


@router.post("/checkout/{session_id}/back", response_model=TransitionResponseSchema)
def back(session: CheckoutSession = Depends(get_checkout_session)):
    return transition_schema(session.machine.back())


@router.post("/checkout/{session_id}/go-to", response_model=TransitionResponseSchema)
def go_to(req: GoToRequestSchema, session: CheckoutSession = Depends(get_checkout_session)):
    try:
        target = CheckoutStep(req.step)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown step {req.step}")
    return transition_schema(session.machine.go_to(target))


@router.post("/checkout/{session_id}/submit", response_model=AttemptSchema)
async def submit(session: CheckoutSession = Depends(get_checkout_session)):
    token = await session.coordinator.submit()
    task = asyncio.create_task(session.coordinator.await_gateway(token))
    task.add_done_callback(_log_gateway_task)
    session.gateway_task = task
    return attempt_schema(session.coordinator.attempt(token))


@router.post("/checkout/{session_id}/cancel-payment", response_model=PaymentResultSchema)
def cancel_payment(session: CheckoutSession = Depends(get_checkout_session)):
    token = session.coordinator.active_token()
    if token is None:
        raise InvalidTransition("There is no payment in progress")
    return payment_result_schema(session.coordinator.cancel(token), session)


@router.post("/checkout/{session_id}/verify", response_model=PaymentResultSchema)
async def verify_payment(session: CheckoutSession = Depends(get_checkout_session)):
    result = await session.coordinator.reverify()
    return payment_result_schema(result, session)


@router.post("/checkout/{session_id}/retry", response_model=TransitionResponseSchema)
def retry(session: CheckoutSession = Depends(get_checkout_session)):
    return transition_schema(session.machine.retry())


@router.post("/checkout/{session_id}/reset", response_model=CheckoutViewSchema)
def reset(session: CheckoutSession = Depends(get_checkout_session)):
    session.coordinator.abandon()
    view = view_schema(session)
    drop_checkout_session(session.session_id)
    return view
