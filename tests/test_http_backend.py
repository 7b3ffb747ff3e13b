"""
Tests for the HTTP order backend adapter.
"""

from __future__ import annotations

import json

import httpx
import pytest

from checkout.application.exceptions import NetworkUnavailable, ServerRejected
from checkout.infrastructure.backend.http_order_backend import HttpOrderBackend


def _backend(handler) -> HttpOrderBackend:
    client = httpx.AsyncClient(base_url="https://api.kitchen.test", transport=httpx.MockTransport(handler))
    return HttpOrderBackend(base_url="https://api.kitchen.test", api_key="secret", client=client)


@pytest.mark.asyncio
async def test_create_order_returns_raw_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text='{"success": true, "data": {"order_id": "ord_1"}}')

    body = await _backend(handler).create_order({"items": []})

    assert body == '{"success": true, "data": {"order_id": "ord_1"}}'
    assert seen == {"path": "/orders", "auth": "Bearer secret", "body": {"items": []}}


@pytest.mark.asyncio
async def test_initialize_payment_sends_callback():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": True})

    await _backend(handler).initialize_payment("ord_1", "ada@example.com", "https://shop.test/v1/payments/callback")

    assert seen["path"] == "/payments/initialize"
    assert seen["body"] == {
        "order_id": "ord_1",
        "email": "ada@example.com",
        "callback_url": "https://shop.test/v1/payments/callback",
    }


@pytest.mark.asyncio
async def test_server_error_is_network_unavailable():
    backend = _backend(lambda request: httpx.Response(503, text="upstream down"))

    with pytest.raises(NetworkUnavailable):
        await backend.verify_payment("txn_1")


@pytest.mark.asyncio
async def test_connection_error_is_network_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkUnavailable):
        await _backend(handler).verify_payment("txn_1")


@pytest.mark.asyncio
async def test_timeout_is_network_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkUnavailable):
        await _backend(handler).create_order({})


@pytest.mark.asyncio
async def test_client_error_is_rejected_with_server_message():
    backend = _backend(lambda request: httpx.Response(422, json={"error": {"message": "Delivery zone is not served"}}))

    with pytest.raises(ServerRejected) as exc:
        await backend.create_order({})

    assert exc.value.status_code == 422
    assert exc.value.user_message == "Delivery zone is not served"


@pytest.mark.asyncio
async def test_client_error_without_body():
    backend = _backend(lambda request: httpx.Response(400, text=""))

    with pytest.raises(ServerRejected) as exc:
        await backend.create_order({})

    assert exc.value.user_message == "Your order could not be accepted."
