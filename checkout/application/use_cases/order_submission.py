from __future__ import annotations

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable

from checkout.application.exceptions import (
    PaymentInitMissing,
    ResponseMalformed,
    ServerRejected,
    ValidationRejected,
)
from checkout.application.ports.order_backend import OrderBackendPort
from checkout.application.utils.retry import retry_read
from checkout.application.utils.totals import compute_totals, to_money
from checkout.application.utils.validators import validate_cart, validate_contact, validate_fulfillment
from checkout.domain.entities.checkout_draft import CheckoutDraft, FulfillmentType, Totals
from checkout.domain.entities.customer import CustomerIdentity
from checkout.domain.entities.order import PaymentInit, PaymentVerification, SubmittedOrder

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {"success", "successful", "paid", "completed"}
FAILED_STATUSES = {"failed", "declined", "reversed", "error"}
ABANDONED_STATUSES = {"abandoned", "cancelled", "canceled"}
PENDING_STATUSES = {"pending", "processing", "ongoing", "queued"}


def _malformed(message: str, raw: Any) -> ResponseMalformed:
    logger.error(
        "Malformed backend response: %s | raw=%s",
        message,
        raw if isinstance(raw, str) else repr(raw),
        extra={"category": ResponseMalformed.category},
    )
    return ResponseMalformed(message, raw=raw)


def _decode(raw: Any, original: Any = None) -> dict[str, Any]:
    """Accept an already-parsed object or a JSON string, including a string wrapping a string."""
    original = raw if original is None else original
    value = raw
    for _ in range(3):
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8", errors="replace")
        if not isinstance(value, str):
            break
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise _malformed(f"response is not valid JSON ({e.msg})", original) from e
    if not isinstance(value, dict):
        raise _malformed(f"expected an object, got {type(value).__name__}", original)
    return value


def _unwrap(payload: dict[str, Any], original: Any) -> dict[str, Any]:
    """Flatten an optional ``data`` wrapper onto the top level. Wrapped keys win."""
    data = payload.get("data")
    if data is None:
        return payload
    if isinstance(data, (str, bytes, bytearray)):
        data = _decode(data, original)
    if not isinstance(data, dict):
        return payload
    merged = {k: v for k, v in payload.items() if k != "data"}
    merged.update(data)
    return merged


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _server_message(body: dict[str, Any]) -> str | None:
    for key in ("message", "error", "error_message", "detail"):
        value = body.get(key)
        if isinstance(value, dict):
            value = value.get("message")
        if _text(value):
            return _text(value)
    return None


def normalize_payment_init(raw: Any, checkout_base_url: str) -> PaymentInit | None:
    """Return None when neither a URL nor an access code is present."""
    if raw is None:
        return None
    body = _unwrap(_decode(raw), raw)
    url = _text(body.get("authorization_url")) or _text(body.get("payment_url"))
    access_code = _text(body.get("access_code"))
    if url is None and access_code is not None:
        url = f"{checkout_base_url.rstrip('/')}/{access_code}"
    if url is None:
        return None
    reference = _text(body.get("reference")) or _text(body.get("trxref"))
    return PaymentInit(authorization_url=url, reference=reference, access_code=access_code)


def normalize_order_response(raw: Any, checkout_base_url: str) -> SubmittedOrder:
    body = _unwrap(_decode(raw), raw)
    if body.get("success") is False:
        raise ServerRejected(_server_message(body))

    order = body.get("order") if isinstance(body.get("order"), dict) else {}
    order_id = _text(body.get("order_id")) or _text(order.get("id"))
    if order_id is None:
        raise _malformed("order_id missing from create-order response", raw)
    order_number = _text(body.get("order_number")) or _text(order.get("order_number"))

    payment_raw = body.get("payment")
    payment = None
    if isinstance(payment_raw, (dict, str, bytes, bytearray)) and payment_raw:
        # the order exists from here on; an unreadable payment object must not hide it
        try:
            payment = normalize_payment_init(payment_raw, checkout_base_url)
        except ResponseMalformed:
            logger.warning(
                "Unreadable payment object on created order",
                extra={"order_id": order_id, "category": PaymentInitMissing.category},
            )
    elif payment_raw is None and (body.get("authorization_url") or body.get("payment_url") or body.get("access_code")):
        payment = normalize_payment_init(body, checkout_base_url)
    return SubmittedOrder(order_id=order_id, order_number=order_number, payment=payment)


def _normalize_status(body: dict[str, Any], raw: Any) -> str:
    value = body.get("payment_status")
    if value is None and isinstance(body.get("status"), str):
        value = body.get("status")
    if value is None:
        if body.get("success") is True:
            return "success"
        if body.get("success") is False:
            return "failed"
        raise _malformed("payment status missing from verification response", raw)
    status = str(value).strip().lower()
    if status in SUCCESS_STATUSES:
        return "success"
    if status in FAILED_STATUSES:
        return "failed"
    if status in ABANDONED_STATUSES:
        return "abandoned"
    if status in PENDING_STATUSES:
        return "pending"
    raise _malformed(f"unknown payment status {value!r}", raw)


def normalize_verification(raw: Any, reference: str) -> PaymentVerification:
    body = _unwrap(_decode(raw), raw)
    status = _normalize_status(body, raw)
    amount = None
    if body.get("amount") is not None:
        try:
            amount = to_money(body["amount"])
        except ValueError as e:
            raise _malformed(f"invalid amount {body['amount']!r}", raw) from e
    return PaymentVerification(
        reference=_text(body.get("reference")) or reference,
        status=status,
        order_id=_text(body.get("order_id")),
        order_number=_text(body.get("order_number")),
        amount=amount,
        paid_at=_text(body.get("paid_at")),
        message=_server_message(body) or _text(body.get("gateway_response")),
    )


def _money(value: Decimal) -> float:
    return float(value)


def build_order_payload(
    draft: CheckoutDraft,
    identity: CustomerIdentity,
    totals: Totals,
    idempotency_key: str | None = None,
) -> dict[str, Any]:
    """Shape a validated draft into the create-order request body."""
    contact = draft.contact
    fulfillment: dict[str, Any] = {"type": draft.fulfillment_type.value if draft.fulfillment_type else None}
    if draft.fulfillment_type == FulfillmentType.DELIVERY:
        address = draft.address
        fulfillment["address"] = {
            "address_line_1": address.address_line_1.strip(),
            "address_line_2": address.address_line_2.strip(),
            "city": address.city.strip(),
            "state": address.state.strip(),
            "postal_code": address.postal_code.strip(),
            "landmark": address.landmark.strip(),
        }
        fulfillment["delivery_zone_id"] = draft.delivery_zone.id if draft.delivery_zone else None
    elif draft.pickup_point is not None:
        fulfillment["pickup_point_id"] = draft.pickup_point.id

    items = []
    for line in draft.items:
        item: dict[str, Any] = {
            "product_id": str(line.product_id).strip(),
            "product_name": line.product_name.strip(),
            "quantity": int(line.quantity),
            "unit_price": _money(line.unit_price),
            "total_price": _money(line.line_total),
        }
        if line.customizations:
            item["customizations"] = dict(line.customizations)
        items.append(item)

    payload: dict[str, Any] = {
        "customer": {
            "name": contact.name.strip(),
            "email": contact.email.strip().lower(),
            "phone": contact.phone.strip(),
        },
        "fulfillment": fulfillment,
        "items": items,
        "totals": {
            "subtotal": _money(totals.subtotal),
            "delivery_fee": _money(totals.delivery_fee),
            "tax": _money(totals.tax),
            "total_amount": _money(totals.total),
        },
        "payment": {"method": draft.payment_method},
        "terms_accepted": draft.terms_accepted,
    }
    if draft.schedule is not None:
        payload["delivery_schedule"] = {
            "delivery_date": draft.schedule.date.isoformat(),
            "delivery_time_start": draft.schedule.start_time,
            "delivery_time_end": draft.schedule.end_time,
            "special_instructions": draft.special_instructions.strip() or None,
        }
    if identity.is_authenticated:
        payload["user_id"] = identity.user_id
    else:
        payload["guest_session_id"] = identity.guest_session_id
    if idempotency_key:
        payload["idempotency_key"] = idempotency_key
    return payload


class OrderSubmissionService:
    def __init__(
        self,
        backend: OrderBackendPort,
        checkout_base_url: str,
        callback_url: str | None = None,
        vat_rate_percent: float = 7.5,
        min_phone_digits: int = 10,
        read_retry_attempts: int = 3,
        read_retry_backoff: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._checkout_base_url = checkout_base_url
        self._callback_url = callback_url
        self._vat_rate_percent = vat_rate_percent
        self._min_phone_digits = min_phone_digits
        self._read_retry_attempts = read_retry_attempts
        self._read_retry_backoff = read_retry_backoff
        self._sleep = sleep
        self._logger = logging.getLogger(__name__)

    async def submit(
        self,
        draft: CheckoutDraft,
        identity: CustomerIdentity,
        idempotency_key: str | None = None,
    ) -> SubmittedOrder:
        """Create the order with exactly one backend call. Never retried here."""
        errors = {
            **validate_contact(draft.contact, self._min_phone_digits),
            **validate_fulfillment(draft),
            **validate_cart(draft),
        }
        if errors:
            raise ValidationRejected(errors)

        totals = compute_totals(draft.items, draft.delivery_fee, self._vat_rate_percent)
        payload = build_order_payload(draft, identity, totals, idempotency_key)
        self._logger.info(
            "Creating order",
            extra={"reason": f"items={len(payload['items'])} total={payload['totals']['total_amount']}"},
        )
        raw = await self._backend.create_order(payload)
        order = normalize_order_response(raw, self._checkout_base_url)

        if order.payment is None:
            self._logger.warning("Order created without payment object", extra={"order_id": order.order_id})
            raise PaymentInitMissing(order)

        self._logger.info(
            "Order created",
            extra={"order_id": order.order_id, "reference": order.payment.reference},
        )
        return order

    async def initialize_payment(self, order_id: str, email: str) -> PaymentInit:
        """Start a payment for an order that already exists."""
        raw = await self._backend.initialize_payment(order_id, email.strip().lower(), self._callback_url)
        init = normalize_payment_init(raw, self._checkout_base_url)
        if init is None:
            raise _malformed("payment initialization returned no URL or access code", raw)
        self._logger.info("Payment initialized", extra={"order_id": order_id, "reference": init.reference})
        return init

    async def verify(self, reference: str) -> PaymentVerification:
        async def _once() -> PaymentVerification:
            raw = await self._backend.verify_payment(reference)
            return normalize_verification(raw, reference)

        verification = await retry_read(
            _once,
            attempts=self._read_retry_attempts,
            backoff_seconds=self._read_retry_backoff,
            description=f"verify {reference}",
            sleep=self._sleep,
        )
        self._logger.info(
            "Payment verified",
            extra={"reference": reference, "order_id": verification.order_id, "reason": verification.status},
        )
        return verification
