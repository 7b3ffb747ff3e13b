from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from checkout.api.v1.presenters import payment_result_schema
from checkout.api.v1.schemas import PaymentResultSchema, PopupCallbackSchema, PopupStatus
from checkout.application.use_cases.payment_coordinator import CONFIRMATION_ROUTE, PaymentResult
from checkout.domain.entities.payment_attempt import GatewayOutcome, GatewayOutcomeKind
from checkout.infrastructure.gateway.callback_gateway import CallbackPaymentGateway
from checkout.wiring.dependencies import find_checkout_session_by_reference, get_gateway

router = APIRouter()
logger = logging.getLogger(__name__)

OUTCOME_BY_STATUS = {
    PopupStatus.success: GatewayOutcomeKind.SUCCESS,
    PopupStatus.failed: GatewayOutcomeKind.FAILURE,
    PopupStatus.cancelled: GatewayOutcomeKind.CANCEL,
}


@router.post("/payments/popup-callback", response_model=PaymentResultSchema)
async def popup_callback(
    req: PopupCallbackSchema,
    gateway: CallbackPaymentGateway = Depends(get_gateway),
):
    session = find_checkout_session_by_reference(req.reference)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown payment reference")

    outcome = GatewayOutcome(
        kind=OUTCOME_BY_STATUS[req.status],
        reference=req.reference,
        message=req.message,
        declined=req.declined,
    )
    logger.info("Popup callback", extra={"reference": req.reference, "channel": "popup", "reason": req.status.value})

    task = session.gateway_task
    if gateway.is_waiting(req.reference) and task is not None and gateway.deliver(req.reference, outcome):
        try:
            result: PaymentResult = await asyncio.shield(task)
        except asyncio.CancelledError:
            raise HTTPException(status_code=409, detail="Payment wait was cancelled")
        return payment_result_schema(result, session)

    # nobody is waiting (process restarted or popup already settled): settle through the backend
    status = "cancelled" if req.status == PopupStatus.cancelled else None
    result = await session.coordinator.handle_redirect(req.reference, status)
    return payment_result_schema(result, session)


@router.get("/payments/callback")
async def payment_callback(
    reference: str | None = Query(None),
    trxref: str | None = Query(None),
    status: str | None = Query(None),
):
    payment_reference = reference or trxref
    if not payment_reference:
        raise HTTPException(status_code=400, detail="Missing payment reference")

    session = find_checkout_session_by_reference(payment_reference)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown payment reference")

    result = await session.coordinator.handle_redirect(payment_reference, status)
    logger.info(
        "Payment redirect handled",
        extra={"reference": payment_reference, "channel": "redirect", "reason": result.status.value},
    )

    if result.succeeded:
        order_number = result.attempt.order_number if result.attempt else None
        query = urlencode({"order_number": order_number or "", "reference": payment_reference})
        return RedirectResponse(url=f"{CONFIRMATION_ROUTE}?{query}", status_code=303)
    query = urlencode({"session_id": session.session_id, "payment": result.status.value})
    return RedirectResponse(url=f"/checkout?{query}", status_code=303)
