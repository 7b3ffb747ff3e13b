from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping


class CheckoutStep(str, Enum):
    CONTACT = "contact"
    FULFILLMENT = "fulfillment"
    SCHEDULE = "schedule"
    PAYMENT_METHOD = "payment_method"
    REVIEW = "review"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


# Forward order used by advance/back; processing and beyond are entered through dedicated hooks
STEP_ORDER: tuple[CheckoutStep, ...] = (
    CheckoutStep.CONTACT,
    CheckoutStep.FULFILLMENT,
    CheckoutStep.SCHEDULE,
    CheckoutStep.PAYMENT_METHOD,
    CheckoutStep.REVIEW,
)


class FulfillmentType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


@dataclass(frozen=True)
class ContactInfo:
    name: str = ""
    email: str = ""
    phone: str = ""

    def is_complete(self) -> bool:
        return bool(self.name.strip() and self.email.strip() and self.phone.strip())


@dataclass(frozen=True)
class DeliveryAddress:
    address_line_1: str = ""
    address_line_2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    landmark: str = ""

    def is_complete(self) -> bool:
        return bool(self.address_line_1.strip() and self.city.strip() and self.state.strip())


@dataclass(frozen=True)
class DeliveryZone:
    id: str
    name: str
    fee: Decimal


@dataclass(frozen=True)
class PickupPoint:
    id: str
    name: str
    address: str = ""


@dataclass(frozen=True)
class CartLine:
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    customizations: Mapping[str, Any] | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ChosenSchedule:
    date: date
    start_time: str  # HH:MM
    end_time: str  # HH:MM


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal  # VAT already included in subtotal
    total: Decimal


@dataclass(frozen=True)
class CheckoutDraft:
    contact: ContactInfo = ContactInfo()
    fulfillment_type: FulfillmentType | None = None
    address: DeliveryAddress = DeliveryAddress()
    delivery_zone: DeliveryZone | None = None
    pickup_point: PickupPoint | None = None
    schedule: ChosenSchedule | None = None
    items: tuple[CartLine, ...] = ()
    payment_method: str | None = None
    terms_accepted: bool = False
    special_instructions: str = ""
    step: CheckoutStep = CheckoutStep.CONTACT

    @property
    def delivery_fee(self) -> Decimal:
        if self.fulfillment_type == FulfillmentType.DELIVERY and self.delivery_zone is not None:
            return self.delivery_zone.fee
        return Decimal("0")
