from decimal import Decimal

import pytest

from tuition_fee_engine.exceptions import InvariantViolation
from tuition_fee_engine.money import display_amount, format_inr, money, split_amount, to_decimal


def test_to_decimal_avoids_float_noise():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal("1,18,000.50") == Decimal("118000.50")
    assert to_decimal(None) == Decimal("0")
    assert to_decimal("  ") == Decimal("0")


@pytest.mark.parametrize("bad", [True, "abc", float("nan"), "Infinity", object()])
def test_to_decimal_rejects_non_amounts(bad):
    with pytest.raises(InvariantViolation):
        to_decimal(bad)


def test_money_rounds_half_up():
    assert money("10.005") == Decimal("10.01")
    assert money("10.004") == Decimal("10.00")


def test_split_amount_puts_residue_on_last_share():
    assert split_amount(100000, [1, 1, 1]) == [Decimal("33333.33"), Decimal("33333.33"), Decimal("33333.34")]
    assert split_amount("0.01", [1, 1, 1]) == [Decimal("0.00"), Decimal("0.00"), Decimal("0.01")]
    assert split_amount(100, []) == []


def test_split_amount_shares_add_up():
    shares = split_amount("37500", [40, 40, 20])
    assert shares == [Decimal("15000.00"), Decimal("15000.00"), Decimal("7500.00")]
    assert sum(shares) == Decimal("37500.00")


def test_split_amount_needs_positive_weights():
    with pytest.raises(InvariantViolation):
        split_amount(100, [0, 0])


def test_presentation_never_shows_negative_amounts():
    assert display_amount(-5) == Decimal("0.00")
    assert format_inr(-5) == "₹0.00"
    assert format_inr("1234567.5") == "₹1,234,567.50"
