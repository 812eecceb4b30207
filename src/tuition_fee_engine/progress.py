import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from tuition_fee_engine.exceptions import FeeEngineError
from tuition_fee_engine.models import Breakdown, PaymentTransaction
from tuition_fee_engine.money import ZERO, money
from tuition_fee_engine.reconcile import reconcile_schedule

logger = logging.getLogger(__name__)


class CalculationMethod(str, Enum):
    PAYMENT_ENGINE = "payment_engine"
    DATABASE = "database"


@dataclass(frozen=True)
class ProgressSummary:
    total_amount: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    progress_percentage: int
    calculation_method: CalculationMethod = CalculationMethod.PAYMENT_ENGINE
    total_installments: int = 0
    completed_installments: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalAmount": self.total_amount,
            "paidAmount": self.paid_amount,
            "pendingAmount": self.pending_amount,
            "progressPercentage": self.progress_percentage,
            "calculationMethod": self.calculation_method.value,
            "totalInstallments": self.total_installments,
            "completedInstallments": self.completed_installments,
        }


def progress_percentage(paid: Any, total: Any) -> int:
    """Whole-number percentage, rounded half-up. 0 when nothing is owed."""
    total_amount = money(total)
    if total_amount <= 0:
        return 0
    pct = money(paid) / total_amount * 100
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def aggregate_progress(breakdown: Breakdown, transactions: Iterable[PaymentTransaction]) -> ProgressSummary:
    """
    Fold a breakdown and the transactions on file into display totals.

    The admission fee always counts as paid. Each instalment contributes at
    most its payable amount, so overpayments never push progress past 100%.
    """
    installments = list(breakdown.installments())

    total = breakdown.overall_summary.total_amount_payable
    paid = breakdown.admission_fee.total_payable
    completed = 0
    results = reconcile_schedule(installments, transactions)
    for installment in installments:
        result = results[installment.key]
        paid += result.allocated_paid
        if result.allocated_paid >= installment.payable_amount:
            completed += 1

    return ProgressSummary(
        total_amount=total,
        paid_amount=paid,
        pending_amount=total - paid,
        progress_percentage=progress_percentage(paid, total),
        calculation_method=CalculationMethod.PAYMENT_ENGINE,
        total_installments=len(installments),
        completed_installments=completed,
    )


def progress_from_database(total_amount: Any, paid_amount: Any) -> ProgressSummary:
    """
    Degraded progress from the persisted totals alone.

    Used when no schedule can be built for the student. Paid is capped at
    the total so the figures stay presentable.
    """
    total = money(total_amount) if total_amount is not None else ZERO
    paid = money(paid_amount) if paid_amount is not None else ZERO
    total = max(total, ZERO)
    paid = min(max(paid, ZERO), total)
    return ProgressSummary(
        total_amount=total,
        paid_amount=paid,
        pending_amount=total - paid,
        progress_percentage=progress_percentage(paid, total),
        calculation_method=CalculationMethod.DATABASE,
    )


def get_progress(
    build: Callable[[], Optional[Breakdown]],
    transactions: Iterable[PaymentTransaction],
    stored_total: Any = None,
    stored_paid: Any = None,
) -> ProgressSummary:
    """
    Progress from a live breakdown, falling back to stored totals.

    build:
        Produces the student's breakdown. Returning None, an empty
        breakdown, or raising FeeEngineError all trigger the fallback.
    """
    try:
        breakdown = build()
    except FeeEngineError as exc:
        logger.warning("Live progress unavailable, using stored totals: %s", exc)
        return progress_from_database(stored_total, stored_paid)

    if breakdown is None or breakdown.is_empty:
        logger.info("No schedule for progress; using stored totals")
        return progress_from_database(stored_total, stored_paid)
    return aggregate_progress(breakdown, transactions)
