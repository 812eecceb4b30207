import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from tuition_fee_engine.config import DEFAULT_ENGINE_SETTINGS, EngineSettings
from tuition_fee_engine.dates import days_until, parse_date
from tuition_fee_engine.models import InstallmentStatus
from tuition_fee_engine.money import ZERO, money
from tuition_fee_engine.reconcile import Reconciliation

logger = logging.getLogger(__name__)

S = InstallmentStatus


STATUS_LABELS: Dict[InstallmentStatus, str] = {
    S.PENDING: "Pending",
    S.PENDING_10_PLUS_DAYS: "Pending",
    S.UPCOMING: "Upcoming",
    S.PARTIALLY_PAID_DAYS_LEFT: "Partially Paid",
    S.OVERDUE: "Overdue",
    S.PARTIALLY_PAID_OVERDUE: "Partially Paid (Overdue)",
    S.VERIFICATION_PENDING: "Verification Pending",
    S.PARTIALLY_PAID_VERIFICATION_PENDING: "Partially Paid (Verification Pending)",
    S.PAID: "Paid",
    S.WAIVED: "Waived",
    S.PARTIALLY_WAIVED: "Partially Waived",
    S.NOT_SETUP: "Not Set Up",
}

# Lower number wins when several instalments are folded into one status.
_AGGREGATE_PRIORITY: Dict[InstallmentStatus, int] = {
    S.VERIFICATION_PENDING: 0,
    S.PARTIALLY_PAID_VERIFICATION_PENDING: 0,
    S.OVERDUE: 1,
    S.PARTIALLY_PAID_OVERDUE: 1,
    S.PARTIALLY_PAID_DAYS_LEFT: 2,
    S.PARTIALLY_WAIVED: 2,
    S.PENDING: 3,
    S.UPCOMING: 3,
    S.PENDING_10_PLUS_DAYS: 4,
    S.PAID: 5,
    S.WAIVED: 5,
    S.NOT_SETUP: 6,
}


def days_until_due(due_date: Any, as_of: Any = None) -> Optional[int]:
    """Calendar days until the due date, negative once it has passed. None without a date."""
    due = parse_date(due_date)
    if due is None:
        return None
    return days_until(due, as_of)


def derive_status(
    payable: Any,
    allocated_paid: Any,
    due_date: Optional[date],
    as_of: Any = None,
    *,
    has_verification_pending: bool = False,
    has_approved: bool = False,
    submitted_paid: Any = None,
    has_transactions: bool = True,
    status_override: Optional[InstallmentStatus] = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> InstallmentStatus:
    """
    The one place an instalment's status is decided.

    payable:
        What the instalment costs after discount and scholarship.
    allocated_paid:
        Approved money counted against it, capped at payable.
    submitted_paid:
        Approved plus still-unverified money, capped at payable. Used for
        the verification states; defaults to allocated_paid.
    due_date:
        None skips every date-based rule.

    Rules are checked top to bottom and the first match wins. Verification
    beats dates, and dates beat the plain pending default.

    Returns:
        InstallmentStatus
    """
    if status_override is not None:
        return status_override

    owed = money(payable)
    allocated = money(allocated_paid)
    submitted = allocated if submitted_paid is None else money(submitted_paid)

    if owed <= 0:
        return S.WAIVED

    if not has_transactions and due_date is None:
        return S.PENDING

    if has_approved and allocated >= owed and not has_verification_pending:
        return S.PAID

    if has_verification_pending:
        if submitted >= owed:
            return S.VERIFICATION_PENDING
        if submitted > 0:
            return S.PARTIALLY_PAID_VERIFICATION_PENDING

    days_left = days_until_due(due_date, as_of)

    if days_left is not None and days_left < 0:
        return S.PARTIALLY_PAID_OVERDUE if allocated > 0 else S.OVERDUE

    if allocated > 0:
        return S.PARTIALLY_PAID_DAYS_LEFT

    if days_left is not None and days_left >= settings.pending_threshold_days:
        return S.PENDING_10_PLUS_DAYS

    return S.PENDING


def status_for_reconciliation(
    reconciliation: Reconciliation,
    due_date: Optional[date],
    as_of: Any = None,
    status_override: Optional[InstallmentStatus] = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> InstallmentStatus:
    status = derive_status(
        reconciliation.payable,
        reconciliation.allocated_paid,
        due_date,
        as_of,
        has_verification_pending=reconciliation.has_verification_pending,
        has_approved=reconciliation.has_approved,
        submitted_paid=reconciliation.submitted_paid,
        has_transactions=reconciliation.has_transactions,
        status_override=status_override,
        settings=settings,
    )
    logger.debug(
        "Instalment %s: payable %s, allocated %s, submitted %s -> %s",
        reconciliation.key,
        reconciliation.payable,
        reconciliation.allocated_paid,
        reconciliation.submitted_paid,
        status.value,
    )
    return status


# -----------------------------
# Predicates and labels
# -----------------------------

def status_label(status: Any) -> str:
    try:
        return STATUS_LABELS[InstallmentStatus(status)]
    except ValueError:
        return str(status).replace("_", " ").title()


def is_overdue(status: InstallmentStatus) -> bool:
    return status in (S.OVERDUE, S.PARTIALLY_PAID_OVERDUE)


def is_pending(status: InstallmentStatus) -> bool:
    return status in (S.PENDING, S.PENDING_10_PLUS_DAYS, S.UPCOMING)


def is_verification_pending(status: InstallmentStatus) -> bool:
    return status in (S.VERIFICATION_PENDING, S.PARTIALLY_PAID_VERIFICATION_PENDING)


def is_partially_paid(status: InstallmentStatus) -> bool:
    return status in (
        S.PARTIALLY_PAID_DAYS_LEFT,
        S.PARTIALLY_PAID_OVERDUE,
        S.PARTIALLY_PAID_VERIFICATION_PENDING,
    )


def is_settled(status: InstallmentStatus) -> bool:
    """Nothing left for the student to do."""
    return status in (S.PAID, S.WAIVED)


def highest_priority_status(statuses: Iterable[InstallmentStatus]) -> Optional[InstallmentStatus]:
    items = list(statuses)
    if not items:
        return None
    return min(items, key=lambda s: _AGGREGATE_PRIORITY.get(s, len(_AGGREGATE_PRIORITY)))


def aggregate_status(statuses: Iterable[InstallmentStatus]) -> InstallmentStatus:
    """
    One status for a whole schedule.

    Anything waiting on staff comes first, then anything overdue, then
    partial payments. A fully settled schedule is paid (or waived when no
    instalment needed money). Otherwise the most urgent pending state wins,
    so a schedule whose next payment is far out reads pending_10_plus_days.
    """
    items = [InstallmentStatus(s) for s in statuses]
    if not items:
        return S.NOT_SETUP
    if all(s is S.WAIVED for s in items):
        return S.WAIVED
    if all(is_settled(s) for s in items):
        return S.PAID
    open_items = [s for s in items if not is_settled(s)]
    return highest_priority_status(open_items)


def remaining_amount(payable: Any, allocated_paid: Any) -> Decimal:
    """Still owed on an instalment; never negative."""
    return max(ZERO, money(payable) - money(allocated_paid))
