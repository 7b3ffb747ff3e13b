from __future__ import annotations

import time
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from checkout.application.use_cases.availability import AvailabilityCalculator
from checkout.application.use_cases.checkout_state_machine import CheckoutStateMachine
from checkout.application.use_cases.order_submission import OrderSubmissionService
from checkout.application.use_cases.payment_coordinator import PaymentCoordinator
from checkout.application.use_cases.snapshot_writer import SnapshotWriter
from checkout.domain.entities.checkout_draft import CartLine, DeliveryAddress, DeliveryZone
from checkout.domain.entities.customer import CustomerIdentity
from checkout.infrastructure.backend.mock_order_backend import MockOrderBackend
from checkout.infrastructure.calendar.business_calendar import build_calendar_rules, build_scheduling_policy
from checkout.infrastructure.cart.memory_cart import MemoryCart
from checkout.infrastructure.gateway.callback_gateway import CallbackPaymentGateway
from checkout.infrastructure.navigation.recording_navigator import RecordingNavigator
from checkout.infrastructure.store.memory_store import MemoryCheckoutSessionStore

LAGOS = ZoneInfo("Africa/Lagos")
SESSION_ID = "sess-1"

# Tuesday morning
FIXED_NOW = datetime(2026, 10, 20, 9, 0, tzinfo=LAGOS)
# Wednesday, comfortably inside lead time and horizon
DELIVERY_DAY = date(2026, 10, 21)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def calculator() -> AvailabilityCalculator:
    policy = build_scheduling_policy(lead_time_minutes=90, slot_minutes=60, max_advance_days=60)
    return AvailabilityCalculator(rules=build_calendar_rules(), policy=policy, timezone=LAGOS)


@pytest.fixture
def store() -> MemoryCheckoutSessionStore:
    return MemoryCheckoutSessionStore()


@pytest.fixture
def backend() -> MockOrderBackend:
    return MockOrderBackend()


@pytest.fixture
def cart_lines() -> list[CartLine]:
    return [CartLine("jollof-rice", "Jollof Rice", 2, Decimal("5000"))]


@pytest.fixture
def cart(cart_lines) -> MemoryCart:
    return MemoryCart(cart_lines)


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()


@pytest.fixture
def gateway() -> CallbackPaymentGateway:
    return CallbackPaymentGateway(timeout_seconds=5)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def submission(backend, sleeps) -> OrderSubmissionService:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return OrderSubmissionService(
        backend=backend,
        checkout_base_url="https://checkout.paystack.com",
        callback_url="http://localhost:8000/v1/payments/callback",
        sleep=fake_sleep,
    )


@pytest.fixture
def make_machine(calculator, store, now):
    def _make(
        session_id: str = SESSION_ID, debounce_seconds: float = 0, monotonic=time.monotonic, **kwargs
    ) -> CheckoutStateMachine:
        return CheckoutStateMachine(
            session_id=session_id,
            availability=calculator,
            snapshots=SnapshotWriter(store, session_id, debounce_seconds=debounce_seconds, monotonic=monotonic),
            clock=lambda: now,
            **kwargs,
        )

    return _make


@pytest.fixture
def machine(make_machine) -> CheckoutStateMachine:
    return make_machine()


@pytest.fixture
def guest() -> CustomerIdentity:
    return CustomerIdentity(guest_session_id="guest-1")


@pytest.fixture
def fill_to_review(guest, cart_lines):
    """Walks a machine through every step with valid delivery data and accepts the terms."""

    def _fill(machine: CheckoutStateMachine, accept_terms: bool = True) -> CheckoutStateMachine:
        machine.start(guest)
        machine.set_cart(cart_lines)
        machine.set_contact("Ada Obi", "Ada@Example.com", "0803 123 4567")
        assert machine.advance().allowed
        machine.choose_fulfillment(
            "delivery",
            address=DeliveryAddress("12 Allen Avenue", city="Ikeja", state="Lagos"),
            delivery_zone=DeliveryZone("ikeja", "Ikeja", Decimal("1500")),
        )
        assert machine.advance().allowed
        assert machine.choose_schedule(DELIVERY_DAY, "12:00", "13:00").allowed
        assert machine.advance().allowed
        machine.choose_payment_method("paystack")
        assert machine.advance().allowed
        if accept_terms:
            machine.accept_terms(True)
        return machine

    return _fill


@pytest.fixture
def make_coordinator(submission, gateway, cart, store, navigator, now):
    def _make(machine: CheckoutStateMachine, session_id: str = SESSION_ID, **overrides) -> PaymentCoordinator:
        params = dict(
            session_id=session_id,
            machine=machine,
            submission=submission,
            gateway=gateway,
            cart=cart,
            store=store,
            navigator=navigator,
            clock=lambda: now.timestamp(),
        )
        params.update(overrides)
        return PaymentCoordinator(**params)

    return _make


@pytest.fixture
def coordinator(make_coordinator, machine) -> PaymentCoordinator:
    return make_coordinator(machine)
