from __future__ import annotations

import logging
from typing import Any

import httpx

from checkout.application.exceptions import NetworkUnavailable, ServerRejected
from checkout.application.ports.order_backend import OrderBackendPort

CREATE_ORDER_PATH = "/orders"
INITIALIZE_PAYMENT_PATH = "/payments/initialize"
VERIFY_PAYMENT_PATH = "/payments/verify"


class HttpOrderBackend(OrderBackendPort):
    """Talks to the storefront backend. Returns response bodies undecoded; shape handling lives upstream."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._logger = logging.getLogger(__name__)

    async def create_order(self, payload: dict[str, Any]) -> Any:
        return await self._request("POST", CREATE_ORDER_PATH, json=payload)

    async def initialize_payment(self, order_id: str, email: str, callback_url: str | None = None) -> Any:
        body: dict[str, Any] = {"order_id": order_id, "email": email}
        if callback_url:
            body["callback_url"] = callback_url
        return await self._request("POST", INITIALIZE_PAYMENT_PATH, json=body)

    async def verify_payment(self, reference: str) -> Any:
        return await self._request("POST", VERIFY_PAYMENT_PATH, json={"reference": reference})

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> str:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            self._logger.warning("Backend request timed out", extra={"reason": f"{method} {path}"})
            raise NetworkUnavailable(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            self._logger.warning("Backend unreachable", extra={"reason": f"{method} {path}: {e}"})
            raise NetworkUnavailable(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 500:
            self._logger.error(
                "Backend server error",
                extra={"reason": f"{method} {path} status={resp.status_code} body={resp.text[:500]}"},
            )
            raise NetworkUnavailable(f"{method} {path} returned {resp.status_code}")
        if resp.status_code >= 400:
            message = self._error_message(resp)
            self._logger.warning(
                "Backend rejected request",
                extra={"reason": f"{method} {path} status={resp.status_code} message={message}"},
            )
            raise ServerRejected(message, resp.status_code)
        return resp.text

    def _error_message(self, resp: httpx.Response) -> str | None:
        try:
            body = resp.json()
        except ValueError:
            return resp.text.strip() or None
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                return error.get("message")
            return body.get("message") or error or body.get("detail")
        return None
