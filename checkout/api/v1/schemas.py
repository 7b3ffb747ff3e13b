from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from checkout.domain.entities.checkout_draft import FulfillmentType


class ContactSchema(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class CartLineSchema(BaseModel):
    product_id: str
    product_name: str = ""
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    customizations: dict[str, Any] | None = None


class StartRequestSchema(BaseModel):
    user_id: str | None = None
    guest_session_id: str | None = None
    profile: ContactSchema | None = None
    items: list[CartLineSchema] = Field(default_factory=list)


class CartRequestSchema(BaseModel):
    items: list[CartLineSchema]


class AddressSchema(BaseModel):
    address_line_1: str = ""
    address_line_2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    landmark: str = ""


class DeliveryZoneSchema(BaseModel):
    id: str
    name: str = ""
    fee: Decimal = Field(ge=0)


class PickupPointSchema(BaseModel):
    id: str
    name: str = ""
    address: str = ""


class FulfillmentRequestSchema(BaseModel):
    fulfillment_type: FulfillmentType
    address: AddressSchema | None = None
    delivery_zone: DeliveryZoneSchema | None = None
    pickup_point: PickupPointSchema | None = None


class ScheduleRequestSchema(BaseModel):
    date: date
    start_time: str
    end_time: str


class PaymentMethodRequestSchema(BaseModel):
    method: str


class TermsRequestSchema(BaseModel):
    accepted: bool
    special_instructions: str | None = None


class GoToRequestSchema(BaseModel):
    step: str


class TransitionResponseSchema(BaseModel):
    allowed: bool
    step: str
    errors: dict[str, str] = Field(default_factory=dict)


class TimeWindowSchema(BaseModel):
    start_time: str
    end_time: str
    available: bool
    reason: str | None = None


class DeliverySlotSchema(BaseModel):
    date: date
    is_business_day: bool
    is_holiday: bool
    holiday_name: str | None = None
    time_windows: list[TimeWindowSchema]


class TotalsSchema(BaseModel):
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total: Decimal


class AttemptSchema(BaseModel):
    attempt_id: str
    status: str
    order_id: str | None = None
    order_number: str | None = None
    reference: str | None = None
    gateway_url: str | None = None


class CheckoutViewSchema(BaseModel):
    session_id: str
    step: str
    draft: dict[str, Any]
    totals: TotalsSchema
    requires_schedule: bool
    last_error: str | None = None
    slots: list[DeliverySlotSchema] | None = None
    attempt: AttemptSchema | None = None


class PaymentResultSchema(BaseModel):
    status: str
    duplicate: bool = False
    channel: str | None = None
    category: str | None = None
    message: str | None = None
    order_number: str | None = None
    reference: str | None = None
    redirect_to: str | None = None


class StartResponseSchema(BaseModel):
    action: str
    view: CheckoutViewSchema
    payment: PaymentResultSchema | None = None


class PopupStatus(str, Enum):
    success = "success"
    failed = "failed"
    cancelled = "cancelled"


class PopupCallbackSchema(BaseModel):
    reference: str
    status: PopupStatus
    message: str | None = None
    declined: bool = False

