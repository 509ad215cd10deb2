"""Fixed-point credit amounts."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CREDIT_QUANTUM = Decimal("0.01")
ZERO = Decimal("0.00")


def to_credits(value: Any) -> Decimal:
    """Coerce a value to a 2-place Decimal. Floats go through str() so no binary drift leaks in."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        try:
            amount = Decimal(value)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid credit amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid credit amount: {value!r}")
    return amount.quantize(CREDIT_QUANTUM, rounding=ROUND_HALF_UP)

