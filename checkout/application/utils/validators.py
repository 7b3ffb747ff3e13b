from __future__ import annotations

import re

from checkout.domain.entities.checkout_draft import CheckoutDraft, ContactInfo, FulfillmentType

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_CHARS_PATTERN = re.compile(r"^[\d\s\-\+\(\)]+$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def count_digits(value: str) -> int:
    return sum(1 for ch in value if ch.isdigit())


def is_valid_phone(value: str, min_digits: int = 10) -> bool:
    cleaned = value.strip()
    if not cleaned or not PHONE_CHARS_PATTERN.match(cleaned):
        return False
    return count_digits(cleaned) >= min_digits


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse "HH:MM" into (hour, minute). Raises ValueError on anything else."""
    match = TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def validate_contact(contact: ContactInfo, min_phone_digits: int = 10) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not contact.name.strip():
        errors["name"] = "Name is required"
    if not contact.email.strip():
        errors["email"] = "Email is required"
    elif not is_valid_email(contact.email):
        errors["email"] = "Please enter a valid email address"
    if not contact.phone.strip():
        errors["phone"] = "Phone number is required"
    elif not is_valid_phone(contact.phone, min_phone_digits):
        errors["phone"] = f"Phone number must contain at least {min_phone_digits} digits"
    return errors


def validate_fulfillment(draft: CheckoutDraft) -> dict[str, str]:
    errors: dict[str, str] = {}
    if draft.fulfillment_type is None:
        errors["fulfillment_type"] = "Please choose delivery or pickup"
        return errors

    if draft.fulfillment_type == FulfillmentType.DELIVERY:
        if draft.delivery_zone is None:
            errors["delivery_zone"] = "Please select a delivery area"
        address = draft.address
        if not address.address_line_1.strip():
            errors["address_line_1"] = "Street address is required"
        if not address.city.strip():
            errors["city"] = "City is required"
        if not address.state.strip():
            errors["state"] = "State is required"
    elif draft.pickup_point is None:
        errors["pickup_point"] = "Please select a pickup location"
    return errors


def validate_payment_method(method: str | None, supported: list[str] | tuple[str, ...]) -> dict[str, str]:
    if not method:
        return {"payment_method": "Please choose a payment method"}
    if method not in supported:
        return {"payment_method": f"Payment method '{method}' is not supported"}
    return {}


def validate_cart(draft: CheckoutDraft) -> dict[str, str]:
    if not draft.items:
        return {"items": "Your cart is empty"}
    for line in draft.items:
        if line.quantity <= 0:
            return {"items": f"Invalid quantity for {line.product_name or line.product_id}"}
        if line.unit_price < 0:
            return {"items": f"Invalid price for {line.product_name or line.product_id}"}
    return {}
