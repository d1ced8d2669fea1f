from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

QUANTITY_EXP = Decimal("0.001")
MONEY_EXP = Decimal("0.0001")

# Discrepancies at or below this are floating noise, never adjusted.
DISCREPANCY_EPSILON = Decimal("0.001")

ZERO = Decimal("0")


def to_decimal(x, default: Decimal = ZERO) -> Decimal:
    if x is None:
        return default
    if isinstance(x, Decimal):
        d = x
    else:
        try:
            d = Decimal(str(x))
        except (InvalidOperation, ValueError):
            raise ValueError(f"not a number: {x!r}")
    if not d.is_finite():
        raise ValueError(f"not a finite number: {x!r}")
    return d


def to_quantity(x) -> Decimal:
    return to_decimal(x).quantize(QUANTITY_EXP, rounding=ROUND_HALF_UP)


def to_money(x) -> Decimal:
    return to_decimal(x).quantize(MONEY_EXP, rounding=ROUND_HALF_UP)


def optional_float(x: Optional[Decimal]) -> Optional[float]:
    return float(x) if x is not None else None


def exceeds_epsilon(discrepancy: Decimal) -> bool:
    return abs(discrepancy) > DISCREPANCY_EPSILON
