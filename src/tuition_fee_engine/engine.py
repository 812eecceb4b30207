"""
Entry points of the fee engine.

Everything here is a pure function over frozen inputs: fee structures and
transactions go in, breakdowns and statuses come out, and nothing is
stored. Callers re-run the functions after every payment or verification
change instead of updating a previous result.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tuition_fee_engine.config import DEFAULT_ENGINE_SETTINGS, EngineSettings
from tuition_fee_engine.dates import as_date
from tuition_fee_engine.models import (
    Breakdown,
    FeeStructure,
    Installment,
    InstallmentStatus,
    PaymentPlan,
    PaymentTransaction,
)
from tuition_fee_engine.money import ZERO
from tuition_fee_engine.progress import ProgressSummary, aggregate_progress
from tuition_fee_engine.reconcile import Reconciliation, reconcile, reconcile_schedule
from tuition_fee_engine.schedule import build_breakdown
from tuition_fee_engine.status import aggregate_status, days_until_due, is_settled, status_for_reconciliation, status_label

logger = logging.getLogger(__name__)

__all__ = [
    "InstallmentView",
    "ScheduleView",
    "aggregate_progress",
    "compute_breakdown",
    "derive_status",
    "enrich_with_statuses",
    "payment_view",
    "reconcile",
    "reconcile_schedule",
]


def compute_breakdown(
    fee_structure: Optional[FeeStructure],
    plan: Any,
    scholarship_amount: Any = 0,
    as_of: Any = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> Breakdown:
    """
    Fee breakdown for a student's plan.

    plan may be a PaymentPlan or its wire string; None and "not_selected"
    give an admission-only breakdown.
    """
    return build_breakdown(fee_structure, PaymentPlan.parse(plan), scholarship_amount, as_of, settings)


def derive_status(
    installment: Installment,
    transactions: Iterable[PaymentTransaction],
    as_of: Any = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> InstallmentStatus:
    """Status of one instalment given every transaction on file for the student."""
    result = reconcile(transactions, installment.key, installment.payable_amount)
    return status_for_reconciliation(
        result,
        installment.due_date,
        as_of,
        status_override=installment.status_override,
        settings=settings,
    )


@dataclass(frozen=True)
class InstallmentView:
    installment: Installment
    status: InstallmentStatus
    reconciliation: Reconciliation
    days_until_due: Optional[int]

    @property
    def paid_amount(self) -> Decimal:
        return self.reconciliation.allocated_paid

    @property
    def pending_amount(self) -> Decimal:
        return self.reconciliation.pending_amount

    @property
    def label(self) -> str:
        return status_label(self.status)

    def to_dict(self) -> Dict[str, Any]:
        data = self.installment.to_dict()
        data.update(
            {
                "status": self.status.value,
                "statusLabel": self.label,
                "paidAmount": self.paid_amount,
                "pendingAmount": self.pending_amount,
                "daysUntilDue": self.days_until_due,
                "isPartialPayment": self.reconciliation.is_partial,
                "partialPaymentSequence": self.reconciliation.sequence,
            }
        )
        return data


@dataclass(frozen=True)
class ScheduleView:
    """A breakdown with each instalment's status filled in."""
    breakdown: Breakdown
    installments: Tuple[InstallmentView, ...]
    payment_status: InstallmentStatus
    progress: ProgressSummary
    next_due_date: Optional[date] = None
    unallocated_transactions: Tuple[PaymentTransaction, ...] = field(default_factory=tuple)

    @property
    def total_paid(self) -> Decimal:
        return sum((v.paid_amount for v in self.installments), ZERO)

    @property
    def total_pending(self) -> Decimal:
        return sum((v.pending_amount for v in self.installments), ZERO)

    def view_for(self, semester: int, installment: int) -> Optional[InstallmentView]:
        for view in self.installments:
            if view.installment.key.semester == semester and view.installment.key.installment == installment:
                return view
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = self.breakdown.to_dict()
        data.update(
            {
                "paymentPlan": self.breakdown.plan.value,
                "paymentStatus": self.payment_status.value,
                "nextDueDate": self.next_due_date.isoformat() if self.next_due_date else None,
                "installments": [v.to_dict() for v in self.installments],
                "progress": self.progress.to_dict(),
                "unallocatedTransactionIds": [t.id for t in self.unallocated_transactions],
            }
        )
        return data


def enrich_with_statuses(
    breakdown: Breakdown,
    transactions: Iterable[PaymentTransaction],
    as_of: Any = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> ScheduleView:
    """
    Attach a status to every instalment of a breakdown.

    Semester-only transactions are spread over their semester. Transactions
    that match no instalment at all are not spread over the schedule; they
    come back in unallocated_transactions so staff can fix the record.
    """
    items = list(transactions)
    today = as_date(as_of)

    results = reconcile_schedule(breakdown.installments(), items)

    views: List[InstallmentView] = []
    matched_ids = set()
    for installment in breakdown.installments():
        result = results[installment.key]
        matched_ids.update(id(t) for t in result.transactions)
        status = status_for_reconciliation(
            result,
            installment.due_date,
            today,
            status_override=installment.status_override,
            settings=settings,
        )
        views.append(InstallmentView(installment, status, result, days_until_due(installment.due_date, today)))

    unallocated = tuple(t for t in items if id(t) not in matched_ids)
    if unallocated:
        logger.warning(
            "%d transaction(s) match no instalment in the %s schedule",
            len(unallocated),
            breakdown.plan.value,
        )

    open_dates = [v.installment.due_date for v in views if v.installment.due_date and not is_settled(v.status)]
    upcoming = [d for d in open_dates if d >= today]

    return ScheduleView(
        breakdown=breakdown,
        installments=tuple(views),
        payment_status=aggregate_status(v.status for v in views),
        progress=aggregate_progress(breakdown, items),
        next_due_date=min(upcoming) if upcoming else None,
        unallocated_transactions=unallocated,
    )


def payment_view(
    fee_structure: Optional[FeeStructure],
    plan: Any,
    transactions: Iterable[PaymentTransaction],
    scholarship_amount: Any = 0,
    as_of: Any = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> ScheduleView:
    """Breakdown and statuses in one call."""
    breakdown = compute_breakdown(fee_structure, plan, scholarship_amount, as_of, settings)
    return enrich_with_statuses(breakdown, transactions, as_of, settings)
