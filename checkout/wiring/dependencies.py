from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from functools import lru_cache
from zoneinfo import ZoneInfo

from checkout.application.ports.order_backend import OrderBackendPort
from checkout.application.ports.session_store import CheckoutSessionStorePort
from checkout.application.use_cases.availability import AvailabilityCalculator
from checkout.application.use_cases.checkout_state_machine import CheckoutStateMachine
from checkout.application.use_cases.order_submission import OrderSubmissionService
from checkout.application.use_cases.payment_coordinator import PaymentCoordinator
from checkout.application.use_cases.recovery import RecoveryManager
from checkout.application.use_cases.snapshot_writer import SnapshotWriter
from checkout.core.config import settings
from checkout.domain.entities.customer import CheckoutCapabilities
from checkout.infrastructure.backend.http_order_backend import HttpOrderBackend
from checkout.infrastructure.backend.mock_order_backend import MockOrderBackend
from checkout.infrastructure.calendar.business_calendar import build_calendar_rules, build_scheduling_policy
from checkout.infrastructure.cart.memory_cart import MemoryCart
from checkout.infrastructure.gateway.callback_gateway import CallbackPaymentGateway
from checkout.infrastructure.navigation.recording_navigator import RecordingNavigator
from checkout.infrastructure.store.json_store import JsonCheckoutSessionStore
from checkout.infrastructure.store.memory_store import MemoryCheckoutSessionStore

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    session_id: str
    machine: CheckoutStateMachine
    coordinator: PaymentCoordinator
    recovery: RecoveryManager
    cart: MemoryCart
    navigator: RecordingNavigator
    gateway_task: asyncio.Task | None = field(default=None, repr=False)


_session_store: CheckoutSessionStorePort | None = None
_order_backend: OrderBackendPort | None = None
_gateway: CallbackPaymentGateway | None = None
_sessions: OrderedDict[str, CheckoutSession] = OrderedDict()


def get_session_store() -> CheckoutSessionStorePort:
    global _session_store
    if _session_store is None:
        if settings.ENV.lower() in {"dev", "local"}:
            _session_store = JsonCheckoutSessionStore(data_dir=settings.CHECKOUT_STORE_DIR)
        else:
            _session_store = MemoryCheckoutSessionStore()
    return _session_store


def get_order_backend() -> OrderBackendPort:
    global _order_backend
    if _order_backend is None:
        if settings.ORDER_BACKEND_URL:
            logger.info("Using HttpOrderBackend")
            _order_backend = HttpOrderBackend(
                base_url=settings.ORDER_BACKEND_URL,
                api_key=settings.ORDER_BACKEND_API_KEY,
                timeout=settings.BACKEND_TIMEOUT_SECONDS,
            )
        elif settings.ENV.lower() in {"dev", "local"}:
            logger.info("Using MockOrderBackend (ORDER_BACKEND_URL missing, ENV=dev/local)")
            _order_backend = MockOrderBackend()
        else:
            raise ValueError("ORDER_BACKEND_URL is required outside dev/local.")
    return _order_backend


def get_gateway() -> CallbackPaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = CallbackPaymentGateway(timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS)
    return _gateway


@lru_cache
def get_availability_calculator() -> AvailabilityCalculator:
    policy = build_scheduling_policy(
        lead_time_minutes=settings.MIN_LEAD_TIME_MINUTES,
        slot_minutes=settings.SLOT_DURATION_MINUTES,
        max_advance_days=settings.MAX_ADVANCE_BOOKING_DAYS,
        window_capacity=settings.WINDOW_CAPACITY,
    )
    return AvailabilityCalculator(
        rules=build_calendar_rules(),
        policy=policy,
        timezone=ZoneInfo(settings.BUSINESS_TIMEZONE),
    )


def get_capabilities() -> CheckoutCapabilities:
    return CheckoutCapabilities(
        requires_auth=settings.REQUIRES_AUTH,
        allows_guest=settings.ALLOWS_GUEST,
        schedules_pickup=settings.SCHEDULES_PICKUP,
        terms_required=settings.TERMS_REQUIRED,
    )


def get_order_submission_service() -> OrderSubmissionService:
    return OrderSubmissionService(
        backend=get_order_backend(),
        checkout_base_url=settings.GATEWAY_CHECKOUT_BASE_URL,
        callback_url=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/v1/payments/callback",
        vat_rate_percent=settings.VAT_RATE_PERCENT,
        min_phone_digits=settings.MIN_PHONE_DIGITS,
        read_retry_attempts=settings.READ_RETRY_ATTEMPTS,
        read_retry_backoff=settings.READ_RETRY_BACKOFF_SECONDS,
    )


def build_checkout_session(session_id: str) -> CheckoutSession:
    store = get_session_store()
    machine = CheckoutStateMachine(
        session_id=session_id,
        availability=get_availability_calculator(),
        snapshots=SnapshotWriter(store, session_id, debounce_seconds=settings.SNAPSHOT_DEBOUNCE_SECONDS),
        capabilities=get_capabilities(),
        supported_payment_methods=settings.SUPPORTED_PAYMENT_METHODS,
        vat_rate_percent=settings.VAT_RATE_PERCENT,
        min_phone_digits=settings.MIN_PHONE_DIGITS,
    )
    cart = MemoryCart()
    navigator = RecordingNavigator()
    coordinator = PaymentCoordinator(
        session_id=session_id,
        machine=machine,
        submission=get_order_submission_service(),
        gateway=get_gateway(),
        cart=cart,
        store=store,
        navigator=navigator,
    )
    recovery = RecoveryManager(
        store=store,
        session_id=session_id,
        max_age_seconds=settings.SNAPSHOT_MAX_AGE_HOURS * 3600,
    )
    return CheckoutSession(
        session_id=session_id,
        machine=machine,
        coordinator=coordinator,
        recovery=recovery,
        cart=cart,
        navigator=navigator,
    )


def get_checkout_session(session_id: str) -> CheckoutSession:
    session = _sessions.get(session_id)
    if session is None:
        session = build_checkout_session(session_id)
        _sessions[session_id] = session
        _evict_idle_sessions()
    _sessions.move_to_end(session_id)
    return session


def _evict_idle_sessions() -> None:
    """
    Forget the least recently used sessions once the registry is full.

    Sessions still waiting on the gateway are skipped; everything else is
    rebuilt from the session store on the next request.
    """
    excess = len(_sessions) - settings.MAX_CACHED_SESSIONS
    if excess <= 0:
        return
    for session_id in list(_sessions)[:-1]:
        if excess <= 0:
            break
        task = _sessions[session_id].gateway_task
        if task is not None and not task.done():
            continue
        del _sessions[session_id]
        excess -= 1
        logger.debug("Evicted idle checkout session", extra={"session_id": session_id})


def find_checkout_session_by_reference(reference: str) -> CheckoutSession | None:
    for session in _sessions.values():
        if any(attempt.reference == reference for attempt in session.coordinator.attempts):
            return session
    session_id = get_session_store().find_session_by_reference(reference)
    if session_id is None:
        return None
    return get_checkout_session(session_id)


def drop_checkout_session(session_id: str) -> None:
    session = _sessions.pop(session_id, None)
    if session is not None and session.gateway_task is not None and not session.gateway_task.done():
        session.gateway_task.cancel()


def reset_dependencies() -> None:
    """Forget every cached adapter and session. Used by tests."""
    global _session_store, _order_backend, _gateway
    _session_store = None
    _order_backend = None
    _gateway = None
    _sessions.clear()
    get_availability_calculator.cache_clear()
