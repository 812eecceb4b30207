from datetime import date, timedelta
from decimal import Decimal

import pytest

from tuition_fee_engine.config import EngineSettings
from tuition_fee_engine.models import InstallmentKey, InstallmentStatus as S, VerificationStatus
from tuition_fee_engine.reconcile import reconcile
from tuition_fee_engine.status import (
    aggregate_status,
    days_until_due,
    highest_priority_status,
    derive_status,
    is_overdue,
    is_partially_paid,
    is_pending,
    is_settled,
    is_verification_pending,
    remaining_amount,
    status_for_reconciliation,
    status_label,
)

TODAY = date(2025, 10, 15)
PAYABLE = Decimal("29500")


def due_in(days):
    return TODAY + timedelta(days=days)


def status(allocated="0", days=None, **kwargs):
    due = None if days is None else due_in(days)
    return derive_status(PAYABLE, Decimal(allocated), due, TODAY, **kwargs)


# -----------------------------
# Transitions, in rule order
# -----------------------------

def test_override_wins_over_everything():
    assert status("29500", -5, has_approved=True, status_override=S.PARTIALLY_WAIVED) is S.PARTIALLY_WAIVED


def test_nothing_payable_is_waived():
    assert derive_status(0, 0, due_in(-30), TODAY) is S.WAIVED
    assert derive_status(0, 0, None, TODAY, has_transactions=False) is S.WAIVED


def test_no_transactions_and_no_due_date_is_pending():
    assert status(has_transactions=False) is S.PENDING


def test_fully_approved_is_paid():
    assert status("29500", -3, has_approved=True) is S.PAID
    assert status("29500", 40, has_approved=True) is S.PAID


def test_paid_waits_for_open_verification():
    result = status("29500", 5, has_approved=True, has_verification_pending=True, submitted_paid="29500")
    assert result is S.VERIFICATION_PENDING


def test_full_submission_awaiting_verification():
    assert status("0", 5, has_verification_pending=True, submitted_paid="29500") is S.VERIFICATION_PENDING


def test_partial_submission_awaiting_verification():
    result = status("0", 5, has_verification_pending=True, submitted_paid="10000")
    assert result is S.PARTIALLY_PAID_VERIFICATION_PENDING


def test_verification_beats_overdue():
    result = status("0", -20, has_verification_pending=True, submitted_paid="10000")
    assert result is S.PARTIALLY_PAID_VERIFICATION_PENDING
    assert status("0", -20, has_verification_pending=True, submitted_paid="29500") is S.VERIFICATION_PENDING


def test_overdue_with_nothing_paid():
    assert status("0", -1) is S.OVERDUE


def test_overdue_with_something_paid():
    assert status("15000", -1, has_approved=True) is S.PARTIALLY_PAID_OVERDUE


def test_partially_paid_before_due_date():
    assert status("15000", 3, has_approved=True) is S.PARTIALLY_PAID_DAYS_LEFT
    assert status("15000", 45, has_approved=True) is S.PARTIALLY_PAID_DAYS_LEFT
    assert status("15000", None, has_approved=True) is S.PARTIALLY_PAID_DAYS_LEFT


def test_far_off_due_date():
    assert status("0", 30) is S.PENDING_10_PLUS_DAYS


def test_default_is_pending():
    assert status("0", 2) is S.PENDING
    assert status("0", None) is S.PENDING


@pytest.mark.parametrize(
    "days, expected",
    [
        (-1, S.OVERDUE),
        (0, S.PENDING),
        (9, S.PENDING),
        (10, S.PENDING_10_PLUS_DAYS),
        (11, S.PENDING_10_PLUS_DAYS),
    ],
)
def test_due_date_boundaries_with_zero_payment(days, expected):
    assert status("0", days, has_transactions=False) is expected
    assert status("0", days) is expected


def test_threshold_is_configurable():
    settings = EngineSettings(pending_threshold_days=5)
    assert status("0", 7, settings=settings) is S.PENDING_10_PLUS_DAYS
    assert status("0", 4, settings=settings) is S.PENDING


def test_verification_pending_with_nothing_submitted_falls_through_to_dates():
    assert status("0", -2, has_verification_pending=True, submitted_paid="0") is S.OVERDUE


def test_submitted_defaults_to_allocated():
    assert status("15000", 5, has_approved=True, has_verification_pending=True) is (
        S.PARTIALLY_PAID_VERIFICATION_PENDING
    )


# -----------------------------
# Through a reconciliation
# -----------------------------

KEY = InstallmentKey(1, 1)


def test_single_full_pending_transaction_is_not_partial(make_tx):
    result = reconcile([make_tx(29500, VerificationStatus.VERIFICATION_PENDING, "1-1")], KEY, PAYABLE)
    assert status_for_reconciliation(result, due_in(5), TODAY) is S.VERIFICATION_PENDING


def test_partial_overdue_scenario(make_tx):
    result = reconcile([make_tx(15000, installment_id="1-1")], KEY, PAYABLE)
    assert status_for_reconciliation(result, due_in(-10), TODAY) is S.PARTIALLY_PAID_OVERDUE
    assert result.allocated_paid == Decimal("15000.00")
    assert result.pending_amount == Decimal("14500.00")


def test_overpayment_still_reads_paid(make_tx):
    result = reconcile([make_tx(50000, installment_id="1-1")], KEY, PAYABLE)
    assert status_for_reconciliation(result, due_in(-10), TODAY) is S.PAID


def test_approved_plus_pending_top_up(make_tx):
    txs = [
        make_tx(15000, VerificationStatus.APPROVED, "1-1"),
        make_tx(14500, VerificationStatus.VERIFICATION_PENDING, "1-1"),
    ]
    result = reconcile(txs, KEY, PAYABLE)
    assert status_for_reconciliation(result, due_in(-10), TODAY) is S.VERIFICATION_PENDING


# -----------------------------
# Helpers
# -----------------------------

def test_days_until_due():
    assert days_until_due(None, TODAY) is None
    assert days_until_due("2025-10-25", TODAY) == 10
    assert days_until_due(due_in(-3), TODAY) == -3


def test_predicates():
    assert is_overdue(S.PARTIALLY_PAID_OVERDUE) and not is_overdue(S.PENDING)
    assert is_pending(S.PENDING_10_PLUS_DAYS) and not is_pending(S.PAID)
    assert is_verification_pending(S.PARTIALLY_PAID_VERIFICATION_PENDING)
    assert is_partially_paid(S.PARTIALLY_PAID_DAYS_LEFT) and not is_partially_paid(S.PAID)
    assert is_settled(S.WAIVED) and is_settled(S.PAID) and not is_settled(S.VERIFICATION_PENDING)


def test_status_labels():
    assert status_label(S.PARTIALLY_PAID_OVERDUE) == "Partially Paid (Overdue)"
    assert status_label("verification_pending") == "Verification Pending"
    assert status_label("something_new") == "Something New"


def test_remaining_amount_never_negative():
    assert remaining_amount(100, 150) == Decimal("0.00")
    assert remaining_amount(100, 40) == Decimal("60.00")


@pytest.mark.parametrize(
    "statuses, expected",
    [
        ([], S.NOT_SETUP),
        ([S.WAIVED, S.WAIVED], S.WAIVED),
        ([S.PAID, S.WAIVED], S.PAID),
        ([S.PAID, S.OVERDUE, S.VERIFICATION_PENDING], S.VERIFICATION_PENDING),
        ([S.PAID, S.PENDING, S.PARTIALLY_PAID_OVERDUE], S.PARTIALLY_PAID_OVERDUE),
        ([S.PAID, S.PENDING_10_PLUS_DAYS, S.PARTIALLY_PAID_DAYS_LEFT], S.PARTIALLY_PAID_DAYS_LEFT),
        ([S.PAID, S.PENDING_10_PLUS_DAYS, S.PENDING], S.PENDING),
        ([S.PAID, S.PENDING_10_PLUS_DAYS], S.PENDING_10_PLUS_DAYS),
        (["paid", "overdue"], S.OVERDUE),
    ],
)
def test_aggregate_status(statuses, expected):
    assert aggregate_status(statuses) is expected


def test_highest_priority_status():
    assert highest_priority_status([]) is None
    assert highest_priority_status([S.PENDING, S.OVERDUE, S.PAID]) is S.OVERDUE
    assert highest_priority_status([S.PAID, S.PENDING_10_PLUS_DAYS]) is S.PENDING_10_PLUS_DAYS
    # ties keep the first one seen
    assert highest_priority_status([S.PARTIALLY_PAID_OVERDUE, S.OVERDUE]) is S.PARTIALLY_PAID_OVERDUE
