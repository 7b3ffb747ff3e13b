from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from checkout.domain.entities.checkout_draft import CartLine, Totals

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce int/float/str/Decimal into a 2dp Decimal. Raises ValueError when not numeric."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Not a monetary amount: {value!r}")
    else:
        try:
            amount = Decimal(str(value).strip())
        except ArithmeticError as e:
            raise ValueError(f"Not a monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(items: Iterable[CartLine], delivery_fee: Decimal, vat_rate_percent: float = 7.5) -> Totals:
    """Prices are VAT inclusive: tax is the share of the subtotal, not an extra charge."""
    subtotal = sum((line.line_total for line in items), Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)
    fee = to_money(delivery_fee)
    rate = Decimal(str(vat_rate_percent))
    tax = (subtotal * rate / (Decimal("100") + rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return Totals(subtotal=subtotal, delivery_fee=fee, tax=tax, total=subtotal + fee)
