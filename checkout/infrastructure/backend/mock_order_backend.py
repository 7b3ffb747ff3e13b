from __future__ import annotations

import logging
import uuid
from typing import Any

from checkout.application.ports.order_backend import OrderBackendPort


class MockOrderBackend(OrderBackendPort):
    """In-memory backend for local runs and tests.

    Payments stay "pending" until ``settle`` is called, the way a real gateway
    only confirms once the customer finishes paying.
    """

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.create_order_calls = 0
        self.initialize_calls = 0
        self.verify_calls = 0
        self._logger = logging.getLogger(__name__)

    async def create_order(self, payload: dict[str, Any]) -> Any:
        self.create_order_calls += 1
        key = payload.get("idempotency_key")
        for order_id, order in self.orders.items():
            if key and order["payload"].get("idempotency_key") == key:
                return self._order_response(order_id, order["payment_reference"])

        order_id = f"ord_{uuid.uuid4().hex[:12]}"
        number = f"ORD-{len(self.orders) + 1:06d}"
        self.orders[order_id] = {"payload": payload, "order_number": number, "payment_reference": None}
        reference = self._new_payment(order_id, payload["totals"]["total_amount"])
        self.orders[order_id]["payment_reference"] = reference
        self._logger.info("Mock order created", extra={"order_id": order_id, "reference": reference})
        return self._order_response(order_id, reference)

    async def initialize_payment(self, order_id: str, email: str, callback_url: str | None = None) -> Any:
        self.initialize_calls += 1
        order = self.orders[order_id]
        reference = self._new_payment(order_id, order["payload"]["totals"]["total_amount"])
        order["payment_reference"] = reference
        return {"status": True, "data": {"reference": reference, "access_code": self.payments[reference]["access_code"]}}

    async def verify_payment(self, reference: str) -> Any:
        self.verify_calls += 1
        payment = self.payments.get(reference)
        if payment is None:
            return {"success": False, "message": "Payment reference not found"}
        order = self.orders[payment["order_id"]]
        return {
            "success": True,
            "reference": reference,
            "order_id": payment["order_id"],
            "order_number": order["order_number"],
            "amount": payment["amount"],
            "payment_status": payment["status"],
        }

    def settle(self, reference: str, status: str = "success") -> None:
        self.payments[reference]["status"] = status

    def _new_payment(self, order_id: str, amount: Any) -> str:
        reference = f"txn_{uuid.uuid4().hex[:16]}"
        self.payments[reference] = {
            "order_id": order_id,
            "amount": amount,
            "status": "pending",
            "access_code": uuid.uuid4().hex[:12],
        }
        return reference

    def _order_response(self, order_id: str, reference: str) -> dict[str, Any]:
        payment = self.payments[reference]
        return {
            "success": True,
            "data": {
                "order_id": order_id,
                "order_number": self.orders[order_id]["order_number"],
                "payment": {"reference": reference, "access_code": payment["access_code"]},
            },
        }
