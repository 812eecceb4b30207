import logging
from decimal import Decimal
from typing import Any, List, Sequence

from tuition_fee_engine.config import GST_RATE_PERCENT
from tuition_fee_engine.exceptions import InvariantViolation
from tuition_fee_engine.models import FeeStructure
from tuition_fee_engine.money import ZERO, money, require_non_negative, split_amount

logger = logging.getLogger(__name__)

GST_MULTIPLIER = 1 + GST_RATE_PERCENT / 100


# -----------------------------
# GST splitter
# -----------------------------

def extract_base(total: Any) -> Decimal:
    """
    Base amount hidden inside a GST-inclusive total.

    The total is rounded to paise first so splitting an already-split
    amount gives the same base back.
    """
    amount = money(require_non_negative(total, "GST-inclusive total"))
    return money(amount / GST_MULTIPLIER)


def extract_gst(total: Any) -> Decimal:
    """GST part of a GST-inclusive total; base + GST always equals the total."""
    amount = money(require_non_negative(total, "GST-inclusive total"))
    return amount - extract_base(amount)


def add_gst(base: Any) -> Decimal:
    return money(require_non_negative(base, "base amount") * GST_MULTIPLIER)


def calculate_gst(base: Any) -> Decimal:
    """GST due on a base amount (the tax alone, not base + tax)."""
    return money(require_non_negative(base, "taxable amount") * GST_RATE_PERCENT / 100)


def calculate_discount(base: Any, percentage: Any) -> Decimal:
    pct = require_non_negative(percentage, "discount percentage")
    if pct > 100:
        raise InvariantViolation(f"discount above 100%: {pct}")
    return money(require_non_negative(base, "base amount") * pct / 100)


# -----------------------------
# Fee structure helpers
# -----------------------------

def program_fee_base(fee_structure: FeeStructure) -> Decimal:
    if fee_structure.program_fee_includes_gst:
        return extract_base(fee_structure.total_program_fee)
    return fee_structure.total_program_fee


def admission_fee_base(fee_structure: FeeStructure) -> Decimal:
    # The admission fee is always configured GST-inclusive.
    return extract_base(fee_structure.admission_fee)


def remaining_program_base(fee_structure: FeeStructure) -> Decimal:
    """
    Base amount left for the schedule once the admission fee is taken out.

    Raises InvariantViolation when the admission fee is worth more than the
    whole program, which would make every instalment negative.
    """
    remaining = program_fee_base(fee_structure) - admission_fee_base(fee_structure)
    if remaining < 0:
        logger.error(
            "Admission fee %s exceeds program fee %s",
            fee_structure.admission_fee,
            fee_structure.total_program_fee,
        )
        raise InvariantViolation(
            f"admission fee {fee_structure.admission_fee} exceeds program fee {fee_structure.total_program_fee}"
        )
    return remaining


def scholarship_from_percentage(
    fee_structure: FeeStructure,
    percentage: Any,
    additional_discount_percentage: Any = 0,
) -> Decimal:
    """
    Turn a scholarship percentage into a flat amount.

    Both the scholarship and any additional per-student discount are taken
    on the program fee base amount (GST excluded), and added together.
    """
    base = program_fee_base(fee_structure)
    scholarship = calculate_discount(base, percentage)
    extra = calculate_discount(base, additional_discount_percentage)
    return scholarship + extra


def instalment_distribution(instalments_per_semester: int) -> List[Decimal]:
    """
    Percentage weights of a semester's share across its instalments.

    Front-loaded splits for 2, 3 and 4 instalments so most of the fee is
    collected early; any other count is split evenly.
    """
    if instalments_per_semester < 1:
        raise ValueError(f"instalments_per_semester must be at least 1, got {instalments_per_semester}")
    if instalments_per_semester == 2:
        return [Decimal("60"), Decimal("40")]
    if instalments_per_semester == 3:
        return [Decimal("40"), Decimal("40"), Decimal("20")]
    if instalments_per_semester == 4:
        return [Decimal("30"), Decimal("30"), Decimal("30"), Decimal("10")]
    return [Decimal("1")] * instalments_per_semester


# -----------------------------
# Scholarship allocator
# -----------------------------

def _check_allocation(capacities: Sequence[Decimal], allocation: Sequence[Decimal], total: Decimal) -> None:
    for capacity, applied in zip(capacities, allocation):
        if applied < 0 or applied > capacity:
            logger.error("Scholarship slot got %s against capacity %s", applied, capacity)
            raise InvariantViolation(f"scholarship {applied} outside 0..{capacity}")
    if sum(allocation, ZERO) > total:
        raise InvariantViolation(f"allocated {sum(allocation, ZERO)} of a {total} scholarship")


def allocate_backwards(capacities: Sequence[Any], total_scholarship: Any) -> List[Decimal]:
    """
    Spread a flat scholarship over instalments, starting from the last one.

    capacities:
        What each instalment can absorb before the scholarship, in
        chronological order.

    Returns:
        The scholarship applied to each instalment, same order. Students pay
        full price early and get the relief at the end of the program.
    """
    caps = [money(require_non_negative(c, "instalment amount")) for c in capacities]
    remaining = money(require_non_negative(total_scholarship, "scholarship amount"))
    allocation = [ZERO] * len(caps)

    for index in range(len(caps) - 1, -1, -1):
        if remaining <= 0:
            break
        applied = min(remaining, caps[index])
        allocation[index] = applied
        remaining -= applied

    if remaining > 0:
        logger.warning("Scholarship exceeds the schedule by %s; leaving it unallocated", remaining)

    _check_allocation(caps, allocation, money(total_scholarship))
    return allocation


def allocate_equally(capacities: Sequence[Any], total_scholarship: Any) -> List[Decimal]:
    """
    Spread a scholarship evenly over all instalments.

    The rounding remainder sits on the last instalment. Whatever a small
    instalment cannot absorb is handed back to the backwards allocator on
    the capacity that is left.
    """
    caps = [money(require_non_negative(c, "instalment amount")) for c in capacities]
    total = money(require_non_negative(total_scholarship, "scholarship amount"))
    if not caps:
        return []

    target = min(total, sum(caps, ZERO))
    shares = split_amount(target, [1] * len(caps))
    allocation = [min(share, cap) for share, cap in zip(shares, caps)]
    overflow = target - sum(allocation, ZERO)

    if overflow > 0:
        leftover = [cap - applied for cap, applied in zip(caps, allocation)]
        extra = allocate_backwards(leftover, overflow)
        allocation = [applied + more for applied, more in zip(allocation, extra)]

    if total > target:
        logger.warning("Scholarship exceeds the schedule by %s; leaving it unallocated", total - target)

    _check_allocation(caps, allocation, total)
    return allocation
