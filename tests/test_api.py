"""
End-to-end tests for the checkout HTTP API with the mock order backend.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from checkout.core.config import settings
from checkout.main import app
from checkout.wiring import dependencies
from checkout.wiring.dependencies import drop_checkout_session, reset_dependencies

CART = [{"product_id": "jollof-rice", "product_name": "Jollof Rice", "quantity": 2, "unit_price": "5000"}]


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "ENV", "local")
    monkeypatch.setattr(settings, "ORDER_BACKEND_URL", None)
    monkeypatch.setattr(settings, "CHECKOUT_STORE_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "SCHEDULES_PICKUP", False)
    monkeypatch.setattr(settings, "SNAPSHOT_DEBOUNCE_SECONDS", 0.0)
    reset_dependencies()
    with TestClient(app) as c:
        yield c
    reset_dependencies()


def _walk_to_review(client: TestClient, session_id: str) -> None:
    resp = client.post(f"/v1/checkout/{session_id}/start", json={"items": CART})
    assert resp.status_code == 200
    assert client.put(
        f"/v1/checkout/{session_id}/contact",
        json={"name": "Ada Obi", "email": "ada@example.com", "phone": "08031234567"},
    ).json()["allowed"]
    assert client.post(f"/v1/checkout/{session_id}/advance").json()["step"] == "fulfillment"
    client.put(
        f"/v1/checkout/{session_id}/fulfillment",
        json={"fulfillment_type": "pickup", "pickup_point": {"id": "vi", "name": "Victoria Island"}},
    )
    assert client.post(f"/v1/checkout/{session_id}/advance").json()["step"] == "payment_method"
    client.put(f"/v1/checkout/{session_id}/payment-method", json={"method": "paystack"})
    assert client.post(f"/v1/checkout/{session_id}/advance").json()["step"] == "review"
    client.put(f"/v1/checkout/{session_id}/terms", json={"accepted": True})


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_availability_marks_closed_dates(client):
    resp = client.get("/v1/availability", params={"start": "2030-12-25", "end": "2030-12-26"})

    assert resp.status_code == 200
    christmas, boxing_day = resp.json()
    assert christmas["is_business_day"] is False
    assert christmas["holiday_name"] == "Christmas Day"
    assert boxing_day["holiday_name"] == "Boxing Day"


def test_availability_rejects_reversed_range(client):
    resp = client.get("/v1/availability", params={"start": "2030-12-26", "end": "2030-12-25"})

    assert resp.status_code == 400


def test_start_returns_fresh_view_with_totals(client):
    resp = client.post("/v1/checkout/s1/start", json={"items": CART})

    data = resp.json()
    assert data["action"] == "fresh"
    assert data["view"]["step"] == "contact"
    assert data["view"]["totals"]["subtotal"] == "10000.00"
    assert data["view"]["totals"]["total"] == "10000.00"


def test_invalid_contact_is_reported_per_field(client):
    client.post("/v1/checkout/s1/start", json={"items": CART})
    client.put("/v1/checkout/s1/contact", json={"name": "", "email": "ada@", "phone": "12"})

    resp = client.post("/v1/checkout/s1/advance")

    data = resp.json()
    assert data["allowed"] is False
    assert set(data["errors"]) == {"name", "email", "phone"}


def test_full_checkout_through_popup_callback(client):
    _walk_to_review(client, "s1")

    attempt = client.post("/v1/checkout/s1/submit").json()
    assert attempt["status"] == "awaiting_gateway"
    reference = attempt["reference"]
    assert attempt["gateway_url"].startswith("https://checkout.paystack.com/")

    dependencies.get_order_backend().settle(reference)
    resp = client.post("/v1/payments/popup-callback", json={"reference": reference, "status": "success"})

    data = resp.json()
    assert resp.status_code == 200
    assert data["status"] == "succeeded"
    assert data["order_number"] == "ORD-000001"
    assert data["redirect_to"] == "/order-confirmation"
    assert client.get("/v1/checkout/s1").json()["step"] == "complete"

    redirect = client.get("/v1/payments/callback", params={"trxref": reference}, follow_redirects=False)
    assert redirect.status_code == 303
    assert redirect.headers["location"].startswith("/order-confirmation?order_number=ORD-000001")


def test_double_submit_is_conflict(client):
    _walk_to_review(client, "s1")
    client.post("/v1/checkout/s1/submit")

    resp = client.post("/v1/checkout/s1/submit")

    assert resp.status_code == 409
    assert resp.json()["category"] == "submission_in_progress"
    assert dependencies.get_order_backend().create_order_calls == 1


def test_cancel_payment_returns_to_review(client):
    _walk_to_review(client, "s1")
    client.post("/v1/checkout/s1/submit")

    resp = client.post("/v1/checkout/s1/cancel-payment")

    assert resp.json()["status"] == "cancelled"
    view = client.get("/v1/checkout/s1").json()
    assert view["step"] == "review"
    assert view["attempt"]["status"] == "cancelled"


def test_redirect_back_while_pending(client):
    _walk_to_review(client, "s1")
    reference = client.post("/v1/checkout/s1/submit").json()["reference"]

    resp = client.get("/v1/payments/callback", params={"reference": reference}, follow_redirects=False)

    assert resp.status_code == 303
    assert resp.headers["location"] == "/checkout?session_id=s1&payment=awaiting_gateway"


def test_submit_before_review_is_validation_error(client):
    client.post("/v1/checkout/s1/start", json={"items": CART})

    resp = client.post("/v1/checkout/s1/submit")

    data = resp.json()
    assert resp.status_code == 422
    assert data["category"] == "validation"
    assert data["retryable"] is False
    assert "step" in data["errors"]


def test_submit_without_start_is_invalid_transition(client):
    resp = client.post("/v1/checkout/nobody/submit")

    assert resp.status_code == 409
    assert resp.json()["category"] == "invalid_transition"


def test_unknown_reference_is_not_found(client):
    resp = client.post("/v1/payments/popup-callback", json={"reference": "txn_missing", "status": "success"})

    assert resp.status_code == 404


def test_checkout_resumes_after_restart(client):
    client.post("/v1/checkout/s1/start", json={"items": CART})
    client.put("/v1/checkout/s1/contact", json={"name": "Ada Obi", "email": "ada@example.com", "phone": "08031234567"})
    client.post("/v1/checkout/s1/advance")

    drop_checkout_session("s1")
    resp = client.post("/v1/checkout/s1/start", json={})

    data = resp.json()
    assert data["action"] == "restored"
    assert data["view"]["step"] == "fulfillment"
    assert data["view"]["draft"]["contact"]["name"] == "Ada Obi"
    assert len(data["view"]["draft"]["items"]) == 1


def test_reset_abandons_checkout(client):
    _walk_to_review(client, "s1")

    resp = client.post("/v1/checkout/s1/reset")

    assert resp.json()["step"] == "contact"
    assert client.post("/v1/checkout/s1/start", json={}).json()["action"] == "fresh"


def test_reset_forgets_the_cached_session(client):
    _walk_to_review(client, "s1")
    assert "s1" in dependencies._sessions

    client.post("/v1/checkout/s1/reset")

    assert "s1" not in dependencies._sessions


def test_registry_evicts_least_recently_used_sessions(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_CACHED_SESSIONS", 2)
    client.post("/v1/checkout/s1/start", json={"items": CART})
    client.put("/v1/checkout/s1/contact", json={"name": "Ada Obi", "email": "ada@example.com", "phone": "08031234567"})
    client.post("/v1/checkout/s1/advance")
    client.post("/v1/checkout/s2/start", json={"items": CART})
    client.post("/v1/checkout/s3/start", json={"items": CART})

    assert list(dependencies._sessions) == ["s2", "s3"]

    # the evicted checkout comes back from the store
    data = client.post("/v1/checkout/s1/start", json={}).json()
    assert data["action"] == "restored"
    assert data["view"]["step"] == "fulfillment"
    assert list(dependencies._sessions) == ["s3", "s1"]


def test_registry_keeps_sessions_waiting_on_the_gateway(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_CACHED_SESSIONS", 1)
    client.post("/v1/checkout/s1/start", json={"items": CART})
    dependencies._sessions["s1"].gateway_task = SimpleNamespace(done=lambda: False)

    client.post("/v1/checkout/s2/start", json={"items": CART})

    assert list(dependencies._sessions) == ["s1", "s2"]

    dependencies._sessions["s1"].gateway_task = None
    client.post("/v1/checkout/s3/start", json={"items": CART})

    assert list(dependencies._sessions) == ["s3"]
