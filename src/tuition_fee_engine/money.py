from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Any, List, Sequence

from tuition_fee_engine.config import MONEY_QUANTUM
from tuition_fee_engine.exceptions import InvariantViolation

ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a record value into a Decimal without going through binary floats.

    None and empty strings count as zero, matching how missing numeric
    columns come back from the record store.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvariantViolation(f"not an amount: {value!r}")
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        if not value.strip():
            return Decimal("0")
        try:
            result = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            raise InvariantViolation(f"not an amount: {value!r}")
    else:
        try:
            result = Decimal(value)
        except (InvalidOperation, TypeError, ValueError):
            raise InvariantViolation(f"not an amount: {value!r}")

    if not result.is_finite():
        raise InvariantViolation(f"amount must be finite, got {value!r}")
    return result


def money(value: Any) -> Decimal:
    """Round to paise, half-up."""
    return to_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def require_non_negative(value: Any, what: str = "amount") -> Decimal:
    amount = to_decimal(value)
    if amount < 0:
        raise InvariantViolation(f"{what} must not be negative, got {amount}")
    return amount


def split_amount(total: Any, weights: Sequence[Any]) -> List[Decimal]:
    """
    Split a total into shares proportional to weights.

    Leading shares are truncated to paise and the residue is carried by the
    last share, so the shares always add back up to the rounded total and
    none of them goes negative.
    """
    if not weights:
        return []
    amount = money(total)
    weight_values = [to_decimal(w) for w in weights]
    weight_sum = sum(weight_values)
    if weight_sum <= 0:
        raise InvariantViolation("weights must add up to a positive number")

    shares = [(amount * w / weight_sum).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN) for w in weight_values[:-1]]
    shares.append(amount - sum(shares, ZERO))
    return shares


def display_amount(value: Any) -> Decimal:
    """Clamp for presentation only: never show negative currency."""
    amount = money(value)
    return amount if amount > 0 else ZERO


def format_inr(value: Any) -> str:
    return f"₹{display_amount(value):,.2f}"
