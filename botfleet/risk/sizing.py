from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal


def floor_to_step(x: float, step: float) -> float:
    if step <= 0:
        return x
    # Decimal avoids 0.0004 / 0.0001 == 3.9999999999999996 flooring one step short
    d_step = Decimal(str(step))
    steps = (Decimal(str(x)) / d_step).to_integral_value(rounding=ROUND_FLOOR)
    return float(steps * d_step)


def order_quantity(quote_amount: float, price: float | None, step: float) -> float:
    if not price or price <= 0 or quote_amount <= 0:
        return 0.0
    return floor_to_step(float(quote_amount) / float(price), step)


def quantity_valid(qty: float, price: float | None, *, min_qty: float, min_notional: float) -> bool:
    if not price or qty <= 0:
        return False
    return qty >= min_qty and qty * float(price) >= min_notional
