from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def _as_decimal(value) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    return _as_decimal(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def compute_collateral_value(quantity_kg, price_per_kg) -> Decimal:
    """Market value of a produce lot, rounded half-up to cents.

    Missing or non-positive inputs value the lot at zero.
    """
    quantity = _as_decimal(quantity_kg)
    price = _as_decimal(price_per_kg)
    if quantity is None or price is None or quantity <= 0 or price <= 0:
        return ZERO
    return round_money(quantity * price)
