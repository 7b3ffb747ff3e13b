"""
Tests for order creation, payment initialization and backend response handling.
"""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from checkout.application.exceptions import (
    NetworkUnavailable,
    PaymentInitMissing,
    ResponseMalformed,
    ServerRejected,
    ValidationRejected,
)
from checkout.application.use_cases.order_submission import (
    OrderSubmissionService,
    build_order_payload,
    normalize_order_response,
    normalize_payment_init,
    normalize_verification,
)
from checkout.domain.entities.checkout_draft import CheckoutDraft, FulfillmentType, PickupPoint
from checkout.domain.entities.customer import CustomerIdentity
from checkout.infrastructure.backend.mock_order_backend import MockOrderBackend

CHECKOUT_BASE = "https://checkout.paystack.com"


def _service(backend, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return OrderSubmissionService(backend=backend, checkout_base_url=CHECKOUT_BASE, sleep=fake_sleep)


def test_order_response_wrapped_in_data():
    raw = {"success": True, "data": {"order_id": "ord_1", "order_number": "ORD-1", "payment": {
        "authorization_url": "https://checkout.paystack.com/abc", "reference": "txn_1"}}}

    order = normalize_order_response(raw, CHECKOUT_BASE)

    assert order.order_id == "ord_1"
    assert order.order_number == "ORD-1"
    assert order.payment.authorization_url == "https://checkout.paystack.com/abc"
    assert order.payment.reference == "txn_1"


def test_order_response_double_encoded():
    inner = json.dumps({"order_id": "ord_2", "payment": {"access_code": "xyz", "reference": "txn_2"}})
    raw = json.dumps(inner)

    order = normalize_order_response(raw, CHECKOUT_BASE)

    assert order.order_id == "ord_2"
    assert order.payment.authorization_url == "https://checkout.paystack.com/xyz"


def test_order_response_nested_payment_string():
    raw = {"data": {"order": {"id": "ord_3", "order_number": "ORD-3"},
                    "payment": json.dumps({"payment_url": "https://pay.example/3", "trxref": "txn_3"})}}

    order = normalize_order_response(raw, CHECKOUT_BASE)

    assert order.order_id == "ord_3"
    assert order.payment.authorization_url == "https://pay.example/3"
    assert order.payment.reference == "txn_3"


def test_order_response_without_payment():
    order = normalize_order_response({"order_id": "ord_4"}, CHECKOUT_BASE)

    assert order.payment is None


def test_order_response_rejected_by_server():
    with pytest.raises(ServerRejected) as exc:
        normalize_order_response({"success": False, "message": "Jollof Rice is sold out"}, CHECKOUT_BASE)

    assert exc.value.user_message == "Jollof Rice is sold out"


@pytest.mark.parametrize("raw", ["<html>502</html>", "[1, 2]", {"data": {"order_number": "ORD-5"}}])
def test_order_response_malformed(raw):
    with pytest.raises(ResponseMalformed):
        normalize_order_response(raw, CHECKOUT_BASE)


def test_payment_init_needs_url_or_access_code():
    assert normalize_payment_init({"reference": "txn_1"}, CHECKOUT_BASE) is None
    assert normalize_payment_init({"status": True, "data": {"access_code": "ac"}}, CHECKOUT_BASE + "/").authorization_url == (
        "https://checkout.paystack.com/ac"
    )


@pytest.mark.parametrize(
    "raw,expected",
    [
        ({"success": True, "payment_status": "success"}, "success"),
        ({"data": {"status": "Abandoned"}}, "abandoned"),
        ({"status": "ongoing"}, "pending"),
        ({"success": True, "payment_status": "declined"}, "failed"),
        ({"success": True}, "success"),
        ({"success": False, "message": "not found"}, "failed"),
    ],
)
def test_verification_statuses(raw, expected):
    assert normalize_verification(raw, "txn_1").status == expected


def test_verification_unknown_status_is_malformed():
    with pytest.raises(ResponseMalformed):
        normalize_verification({"payment_status": "mystery"}, "txn_1")


def test_verification_reads_amount():
    verification = normalize_verification({"data": {"status": "success", "amount": "11500", "reference": "txn_9"}}, "x")

    assert verification.amount == Decimal("11500.00")
    assert verification.reference == "txn_9"


def test_payload_shape(machine, fill_to_review):
    fill_to_review(machine)
    machine.set_special_instructions("Gate code 1234")

    payload = build_order_payload(machine.draft, machine.identity, machine.totals(), idempotency_key="key-1")

    assert payload["customer"] == {"name": "Ada Obi", "email": "ada@example.com", "phone": "0803 123 4567"}
    assert payload["fulfillment"]["type"] == "delivery"
    assert payload["fulfillment"]["delivery_zone_id"] == "ikeja"
    assert payload["fulfillment"]["address"]["city"] == "Ikeja"
    assert payload["items"] == [{
        "product_id": "jollof-rice",
        "product_name": "Jollof Rice",
        "quantity": 2,
        "unit_price": 5000.0,
        "total_price": 10000.0,
    }]
    assert payload["totals"] == {"subtotal": 10000.0, "delivery_fee": 1500.0, "tax": 697.67, "total_amount": 11500.0}
    assert payload["payment"] == {"method": "paystack"}
    assert payload["delivery_schedule"] == {
        "delivery_date": "2026-10-21",
        "delivery_time_start": "12:00",
        "delivery_time_end": "13:00",
        "special_instructions": "Gate code 1234",
    }
    assert payload["guest_session_id"] == "guest-1"
    assert "user_id" not in payload
    assert payload["idempotency_key"] == "key-1"


def test_pickup_payload_has_pickup_point(machine, fill_to_review):
    fill_to_review(machine)
    draft = CheckoutDraft(
        contact=machine.draft.contact,
        fulfillment_type=FulfillmentType.PICKUP,
        pickup_point=PickupPoint("vi", "Victoria Island"),
        items=machine.draft.items,
    )

    payload = build_order_payload(draft, CustomerIdentity(user_id="user-7"), machine.totals())

    assert payload["fulfillment"] == {"type": "pickup", "pickup_point_id": "vi"}
    assert payload["user_id"] == "user-7"
    assert "delivery_schedule" not in payload


@pytest.mark.asyncio
async def test_submit_creates_order_once(submission, backend, machine, fill_to_review):
    fill_to_review(machine)

    order = await submission.submit(machine.draft, machine.identity, idempotency_key="key-1")

    assert backend.create_order_calls == 1
    assert order.order_number == "ORD-000001"
    assert order.payment.reference.startswith("txn_")
    assert order.payment.authorization_url.startswith("https://checkout.paystack.com/")


@pytest.mark.asyncio
async def test_submit_validates_before_calling_backend(submission, backend, machine, guest):
    machine.start(guest)

    with pytest.raises(ValidationRejected) as exc:
        await submission.submit(machine.draft, guest)

    assert backend.create_order_calls == 0
    assert "items" in exc.value.errors


@pytest.mark.asyncio
async def test_submit_without_payment_object(machine, fill_to_review):
    class NoPaymentBackend(MockOrderBackend):
        async def create_order(self, payload):
            response = await super().create_order(payload)
            del response["data"]["payment"]
            return response

    submission = _service(NoPaymentBackend(), [])
    fill_to_review(machine)

    with pytest.raises(PaymentInitMissing) as exc:
        await submission.submit(machine.draft, machine.identity)

    assert exc.value.order.order_id.startswith("ord_")


def test_unreadable_payment_keeps_the_created_order():
    order = normalize_order_response({"success": True, "order_id": "ord_1", "payment": "not json"}, CHECKOUT_BASE)

    assert order.order_id == "ord_1"
    assert order.payment is None


@pytest.mark.asyncio
async def test_submit_with_unreadable_payment_object(machine, fill_to_review):
    class GarbledPaymentBackend(MockOrderBackend):
        async def create_order(self, payload):
            response = await super().create_order(payload)
            response["data"]["payment"] = "<html>gateway error</html>"
            return response

    submission = _service(GarbledPaymentBackend(), [])
    fill_to_review(machine)

    with pytest.raises(PaymentInitMissing) as exc:
        await submission.submit(machine.draft, machine.identity)

    assert exc.value.order.order_number == "ORD-000001"


@pytest.mark.asyncio
async def test_create_order_is_never_retried(machine, fill_to_review, sleeps):
    class FlakyBackend(MockOrderBackend):
        async def create_order(self, payload):
            self.create_order_calls += 1
            raise NetworkUnavailable("connection reset")

    backend = FlakyBackend()
    submission = _service(backend, sleeps)
    fill_to_review(machine)

    with pytest.raises(NetworkUnavailable):
        await submission.submit(machine.draft, machine.identity)

    assert backend.create_order_calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_verify_retries_with_backoff(sleeps):
    class SlowStartBackend(MockOrderBackend):
        failures = 2

        async def verify_payment(self, reference):
            self.verify_calls += 1
            if self.failures:
                self.failures -= 1
                raise NetworkUnavailable("timeout")
            return {"status": True, "data": {"status": "success", "reference": reference}}

    backend = SlowStartBackend()
    submission = _service(backend, sleeps)

    verification = await submission.verify("txn_1")

    assert verification.is_successful
    assert backend.verify_calls == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_verify_gives_up_after_attempts(sleeps):
    class DownBackend(MockOrderBackend):
        async def verify_payment(self, reference):
            self.verify_calls += 1
            raise NetworkUnavailable("down")

    backend = DownBackend()
    submission = _service(backend, sleeps)

    with pytest.raises(NetworkUnavailable):
        await submission.verify("txn_1")

    assert backend.verify_calls == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_initialize_payment_for_existing_order(submission, backend, machine, fill_to_review):
    fill_to_review(machine)
    order = await submission.submit(machine.draft, machine.identity)

    init = await submission.initialize_payment(order.order_id, "ADA@example.com")

    assert backend.initialize_calls == 1
    assert init.reference != order.payment.reference
