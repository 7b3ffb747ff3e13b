from __future__ import annotations

import json
import logging
import re
import threading
import zlib
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from checkout.application.ports.session_store import CheckoutSessionStorePort
from checkout.domain.entities.checkout_draft import (
    CartLine,
    CheckoutDraft,
    CheckoutStep,
    ChosenSchedule,
    ContactInfo,
    DeliveryAddress,
    DeliveryZone,
    FulfillmentType,
    PickupPoint,
)
from checkout.domain.entities.payment_attempt import AttemptStatus, PaymentAttempt
from checkout.domain.entities.recovery_snapshot import RecoverySnapshot

SAFE_ID_PATTERN = re.compile(r"[^A-Za-z0-9_.-]")
LOCK_STRIPES = 64
REFERENCE_INDEX_FILE = "references.index"


class JsonCheckoutSessionStore(CheckoutSessionStorePort):
    """
    One JSON document per checkout session, replaced atomically on every write.

    Payment references are also kept in a small index file so a gateway
    redirect finds its session without opening every document.
    """

    def __init__(self, data_dir: str = "./data/checkout") -> None:
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        # a fixed pool, so finished sessions leave nothing behind
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._index_lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    def _get_lock(self, session_id: str) -> threading.Lock:
        return self._locks[zlib.crc32(session_id.encode("utf-8")) % LOCK_STRIPES]

    def _get_file_path(self, session_id: str) -> Path:
        return self._data_dir / f"{SAFE_ID_PATTERN.sub('_', session_id)}.json"

    def _get_index_path(self) -> Path:
        return self._data_dir / REFERENCE_INDEX_FILE

    def _load_index(self) -> dict[str, str]:
        index_path = self._get_index_path()
        if not index_path.exists():
            return {}
        try:
            with open(index_path, "r", encoding="utf-8") as f:
                index = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            self._logger.warning("Corrupted reference index ignored", extra={"reason": str(e)})
            return {}
        return index if isinstance(index, dict) else {}

    def _save_index(self, index: dict[str, str]) -> None:
        index_path = self._get_index_path()
        temp_path = index_path.with_suffix(".index.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(index, f, indent=2, ensure_ascii=False)
            temp_path.replace(index_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)
            raise

    def _index_reference(self, reference: str, session_id: str) -> None:
        with self._index_lock:
            index = self._load_index()
            if index.get(reference) == session_id:
                return
            index[reference] = session_id
            self._save_index(index)

    def _unindex_session(self, session_id: str) -> None:
        with self._index_lock:
            index = self._load_index()
            kept = {reference: owner for reference, owner in index.items() if owner != session_id}
            if len(kept) != len(index):
                self._save_index(kept)

    def _default_data(self, session_id: str) -> dict[str, Any]:
        return {
            "session_id": session_id,
            "snapshot": None,
            "last_reference": None,
            "checkout_in_progress": False,
            "version": 1,
        }

    def _load_session_data(self, session_id: str) -> dict[str, Any]:
        """Load session data, defaults if missing or corrupted."""
        file_path = self._get_file_path(session_id)
        if not file_path.exists():
            return self._default_data(session_id)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            self._logger.warning("Corrupted checkout state ignored", extra={"session_id": session_id, "reason": str(e)})
            return self._default_data(session_id)
        if not isinstance(data, dict):
            return self._default_data(session_id)
        data.setdefault("version", 1)
        return data

    def _save_session_data(self, session_id: str, data: dict[str, Any]) -> None:
        """Write to a temp file, then rename over the target."""
        file_path = self._get_file_path(session_id)
        temp_path = file_path.with_suffix(".json.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_path.replace(file_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)
            raise

    def _serialize_snapshot(self, snapshot: RecoverySnapshot) -> dict[str, Any]:
        return {
            "draft": self._serialize_draft(snapshot.draft),
            "step": snapshot.step.value,
            "delivery_fee": str(snapshot.delivery_fee),
            "saved_at": snapshot.saved_at,
            "last_attempt": self._serialize_attempt(snapshot.last_attempt) if snapshot.last_attempt else None,
        }

    def _deserialize_snapshot(self, data: dict[str, Any]) -> RecoverySnapshot:
        attempt = data.get("last_attempt")
        return RecoverySnapshot(
            draft=self._deserialize_draft(data.get("draft") or {}),
            step=CheckoutStep(data.get("step", CheckoutStep.CONTACT.value)),
            delivery_fee=Decimal(str(data.get("delivery_fee", "0"))),
            saved_at=float(data.get("saved_at", 0.0)),
            last_attempt=self._deserialize_attempt(attempt) if attempt else None,
        )

    def _serialize_draft(self, draft: CheckoutDraft) -> dict[str, Any]:
        return {
            "contact": {"name": draft.contact.name, "email": draft.contact.email, "phone": draft.contact.phone},
            "fulfillment_type": draft.fulfillment_type.value if draft.fulfillment_type else None,
            "address": {
                "address_line_1": draft.address.address_line_1,
                "address_line_2": draft.address.address_line_2,
                "city": draft.address.city,
                "state": draft.address.state,
                "postal_code": draft.address.postal_code,
                "landmark": draft.address.landmark,
            },
            "delivery_zone": (
                {"id": draft.delivery_zone.id, "name": draft.delivery_zone.name, "fee": str(draft.delivery_zone.fee)}
                if draft.delivery_zone
                else None
            ),
            "pickup_point": (
                {"id": draft.pickup_point.id, "name": draft.pickup_point.name, "address": draft.pickup_point.address}
                if draft.pickup_point
                else None
            ),
            "schedule": (
                {
                    "date": draft.schedule.date.isoformat(),
                    "start_time": draft.schedule.start_time,
                    "end_time": draft.schedule.end_time,
                }
                if draft.schedule
                else None
            ),
            "items": [
                {
                    "product_id": line.product_id,
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "unit_price": str(line.unit_price),
                    "customizations": dict(line.customizations) if line.customizations else None,
                }
                for line in draft.items
            ],
            "payment_method": draft.payment_method,
            "terms_accepted": draft.terms_accepted,
            "special_instructions": draft.special_instructions,
            "step": draft.step.value,
        }

    def _deserialize_draft(self, data: dict[str, Any]) -> CheckoutDraft:
        contact = data.get("contact") or {}
        address = data.get("address") or {}
        zone = data.get("delivery_zone")
        pickup = data.get("pickup_point")
        schedule = data.get("schedule")
        return CheckoutDraft(
            contact=ContactInfo(
                name=contact.get("name", ""),
                email=contact.get("email", ""),
                phone=contact.get("phone", ""),
            ),
            fulfillment_type=FulfillmentType(data["fulfillment_type"]) if data.get("fulfillment_type") else None,
            address=DeliveryAddress(
                address_line_1=address.get("address_line_1", ""),
                address_line_2=address.get("address_line_2", ""),
                city=address.get("city", ""),
                state=address.get("state", ""),
                postal_code=address.get("postal_code", ""),
                landmark=address.get("landmark", ""),
            ),
            delivery_zone=DeliveryZone(zone["id"], zone.get("name", ""), Decimal(str(zone.get("fee", "0")))) if zone else None,
            pickup_point=PickupPoint(pickup["id"], pickup.get("name", ""), pickup.get("address", "")) if pickup else None,
            schedule=(
                ChosenSchedule(date.fromisoformat(schedule["date"]), schedule["start_time"], schedule["end_time"])
                if schedule
                else None
            ),
            items=tuple(
                CartLine(
                    product_id=item["product_id"],
                    product_name=item.get("product_name", ""),
                    quantity=int(item.get("quantity", 1)),
                    unit_price=Decimal(str(item.get("unit_price", "0"))),
                    customizations=item.get("customizations"),
                )
                for item in data.get("items", [])
            ),
            payment_method=data.get("payment_method"),
            terms_accepted=bool(data.get("terms_accepted", False)),
            special_instructions=data.get("special_instructions", ""),
            step=CheckoutStep(data.get("step", CheckoutStep.CONTACT.value)),
        )

    def _serialize_attempt(self, attempt: PaymentAttempt) -> dict[str, Any]:
        return {
            "attempt_id": attempt.attempt_id,
            "status": attempt.status.value,
            "created_at": attempt.created_at,
            "order_id": attempt.order_id,
            "order_number": attempt.order_number,
            "reference": attempt.reference,
            "gateway_url": attempt.gateway_url,
            "amount": str(attempt.amount) if attempt.amount is not None else None,
            "failure_category": attempt.failure_category,
            "failure_message": attempt.failure_message,
        }

    def _deserialize_attempt(self, data: dict[str, Any]) -> PaymentAttempt:
        return PaymentAttempt(
            attempt_id=data["attempt_id"],
            status=AttemptStatus(data["status"]),
            created_at=float(data.get("created_at", 0.0)),
            order_id=data.get("order_id"),
            order_number=data.get("order_number"),
            reference=data.get("reference"),
            gateway_url=data.get("gateway_url"),
            amount=Decimal(data["amount"]) if data.get("amount") is not None else None,
            failure_category=data.get("failure_category"),
            failure_message=data.get("failure_message"),
        )

    def load_snapshot(self, session_id: str) -> RecoverySnapshot | None:
        with self._get_lock(session_id):
            data = self._load_session_data(session_id)
        raw = data.get("snapshot")
        if not raw:
            return None
        try:
            return self._deserialize_snapshot(raw)
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            self._logger.warning("Unreadable checkout snapshot ignored", extra={"session_id": session_id, "reason": str(e)})
            return None

    def save_snapshot(self, session_id: str, snapshot: RecoverySnapshot) -> None:
        serialized = self._serialize_snapshot(snapshot)
        with self._get_lock(session_id):
            data = self._load_session_data(session_id)
            data["snapshot"] = serialized
            self._save_session_data(session_id, data)
        if snapshot.last_attempt is not None and snapshot.last_attempt.reference:
            self._index_reference(snapshot.last_attempt.reference, session_id)

    def get_last_reference(self, session_id: str) -> str | None:
        with self._get_lock(session_id):
            return self._load_session_data(session_id).get("last_reference")

    def set_last_reference(self, session_id: str, reference: str) -> None:
        with self._get_lock(session_id):
            data = self._load_session_data(session_id)
            data["last_reference"] = reference
            self._save_session_data(session_id, data)
        self._index_reference(reference, session_id)

    def is_checkout_in_progress(self, session_id: str) -> bool:
        with self._get_lock(session_id):
            return bool(self._load_session_data(session_id).get("checkout_in_progress", False))

    def mark_checkout_in_progress(self, session_id: str, in_progress: bool) -> None:
        with self._get_lock(session_id):
            data = self._load_session_data(session_id)
            data["checkout_in_progress"] = bool(in_progress)
            self._save_session_data(session_id, data)

    def find_session_by_reference(self, reference: str) -> str | None:
        with self._index_lock:
            session_id = self._load_index().get(reference)
        if session_id is None:
            return None
        # the index can outlive a rewrite; the session document decides
        with self._get_lock(session_id):
            data = self._load_session_data(session_id)
        attempt = (data.get("snapshot") or {}).get("last_attempt") or {}
        if reference in (data.get("last_reference"), attempt.get("reference")):
            return session_id
        return None

    def reset(self, session_id: str) -> None:
        """Removing the single session file clears every key at once."""
        with self._get_lock(session_id):
            self._get_file_path(session_id).unlink(missing_ok=True)
        self._unindex_session(session_id)
