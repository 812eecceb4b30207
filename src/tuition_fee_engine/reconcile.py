import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tuition_fee_engine.config import DEFAULT_ENGINE_SETTINGS, EngineSettings
from tuition_fee_engine.exceptions import InvariantViolation
from tuition_fee_engine.models import (
    FeeStructure,
    Installment,
    InstallmentKey,
    PaymentPlan,
    PaymentTransaction,
    SemesterKey,
    VerificationStatus,
)
from tuition_fee_engine.money import ZERO, money, require_non_negative
from tuition_fee_engine.schedule import build_breakdown

logger = logging.getLogger(__name__)


class MatchedBy(str, Enum):
    INSTALLMENT = "installment"
    SEMESTER = "semester"       # legacy records that only carry a semester number
    NONE = "none"


class ExpectedAmountSource(str, Enum):
    SCHEDULE = "schedule"                   # recomputed payable for the student's plan
    FLAT_FORMULA = "flat_formula"           # (program fee - admission fee) / instalment count
    LARGEST_TRANSACTION = "largest_transaction"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ExpectedAmount:
    amount: Decimal
    source: ExpectedAmountSource


@dataclass(frozen=True)
class Reconciliation:
    """What the transactions on file say about one instalment."""
    key: InstallmentKey
    payable: Decimal
    transactions: Tuple[PaymentTransaction, ...]
    matched_by: MatchedBy
    approved_paid: Decimal        # approved + partially approved
    pending_submitted: Decimal    # still waiting on verification
    allocated_paid: Decimal       # approved, capped at payable
    submitted_paid: Decimal       # approved + waiting, capped at payable
    expected_amount: Decimal
    is_partial: bool
    sequence: int                 # highest partial_payment_sequence seen, 0 if none

    @property
    def pending_amount(self) -> Decimal:
        return self.payable - self.allocated_paid

    @property
    def has_transactions(self) -> bool:
        return bool(self.transactions)

    @property
    def has_verification_pending(self) -> bool:
        return any(t.is_awaiting_verification for t in self.transactions)

    @property
    def has_approved(self) -> bool:
        return any(t.is_approved for t in self.transactions)

    @property
    def overpaid_amount(self) -> Decimal:
        # not refunded or carried forward; reported only
        return max(ZERO, self.approved_paid - self.payable)


def match_transactions(
    transactions: Iterable[PaymentTransaction],
    key: InstallmentKey,
) -> Tuple[Tuple[PaymentTransaction, ...], MatchedBy]:
    """
    Transactions paying for one instalment.

    Exact instalment matches win. Only when no transaction carries the
    instalment key do semester-only records for the same semester count.
    """
    items = list(transactions)
    exact = tuple(t for t in items if t.key == key)
    if exact:
        return exact, MatchedBy.INSTALLMENT

    fallback = tuple(t for t in items if t.key == SemesterKey(key.semester))
    if fallback:
        logger.debug("Instalment %s matched %d semester-only transactions", key, len(fallback))
        return fallback, MatchedBy.SEMESTER
    return (), MatchedBy.NONE


def is_partial_payment(allocated_paid: Any, expected_amount: Any) -> bool:
    allocated = money(allocated_paid)
    return ZERO < allocated < money(expected_amount)


def _summarize(
    key: InstallmentKey,
    owed: Decimal,
    expected: Decimal,
    matched: Tuple[PaymentTransaction, ...],
    matched_by: MatchedBy,
    approved: Decimal,
    waiting: Decimal,
) -> Reconciliation:
    allocated = min(approved, owed)
    submitted = min(approved + waiting, owed)

    if approved > owed:
        logger.info("Instalment %s overpaid by %s", key, approved - owed)

    return Reconciliation(
        key=key,
        payable=owed,
        transactions=matched,
        matched_by=matched_by,
        approved_paid=approved,
        pending_submitted=waiting,
        allocated_paid=allocated,
        submitted_paid=submitted,
        expected_amount=expected,
        is_partial=is_partial_payment(allocated, expected),
        sequence=max((t.partial_payment_sequence for t in matched), default=0),
    )


def reconcile(
    transactions: Iterable[PaymentTransaction],
    installment_key: InstallmentKey,
    payable: Any,
    expected_amount: Any = None,
) -> Reconciliation:
    """
    Sum up the transactions for one instalment.

    payable:
        The instalment's payable amount; nothing above it counts as paid.
    expected_amount:
        What staff expect for the instalment when judging partial payments.
        Defaults to payable.

    Only the one instalment is known here, so semester-only records are
    credited to it in full. Use reconcile_schedule when the whole schedule
    is at hand.
    """
    owed = money(require_non_negative(payable, "payable amount"))
    expected = owed if expected_amount is None else money(expected_amount)
    matched, matched_by = match_transactions(transactions, installment_key)

    approved = sum((t.amount for t in matched if t.is_approved), ZERO)
    waiting = sum((t.amount for t in matched if t.is_awaiting_verification), ZERO)
    return _summarize(installment_key, owed, expected, matched, matched_by, approved, waiting)


def _spread_semester_payments(
    installments: List[Installment],
    transactions: List[PaymentTransaction],
) -> Tuple[Dict[InstallmentKey, Decimal], Dict[InstallmentKey, Decimal], Dict[InstallmentKey, List[PaymentTransaction]]]:
    """
    Hand semester-only payments to the instalments of their semester.

    Approved money fills instalments in due order, each up to its payable
    amount; money awaiting verification then fills what approved money left
    open. Anything beyond the semester's total lands on its last instalment
    as an overpayment. A transaction is attached to every instalment it
    credited, or to the first one when it carried no usable money.
    """
    approved = {i.key: ZERO for i in installments}
    waiting = {i.key: ZERO for i in installments}
    attached: Dict[InstallmentKey, List[PaymentTransaction]] = {i.key: [] for i in installments}

    def pour(tx: PaymentTransaction, credit: Dict[InstallmentKey, Decimal]) -> None:
        remaining = tx.amount
        for installment in installments:
            if remaining <= 0:
                break
            room = installment.payable_amount - approved[installment.key] - waiting[installment.key]
            take = min(max(room, ZERO), remaining)
            if take > 0:
                credit[installment.key] += take
                attached[installment.key].append(tx)
                remaining -= take
        if remaining > 0:
            last = installments[-1].key
            credit[last] += remaining
            if not any(t is tx for t in attached[last]):
                attached[last].append(tx)

    for tx in transactions:
        if tx.is_approved:
            pour(tx, approved)
    for tx in transactions:
        if tx.is_awaiting_verification:
            pour(tx, waiting)
    for tx in transactions:
        if not any(any(t is tx for t in txs) for txs in attached.values()):
            attached[installments[0].key].append(tx)

    return approved, waiting, attached


def reconcile_schedule(
    installments: Iterable[Installment],
    transactions: Iterable[PaymentTransaction],
) -> Dict[InstallmentKey, Reconciliation]:
    """
    Reconcile every instalment of a schedule at once.

    Transactions carrying an instalment key go to that instalment exactly as
    in reconcile. A semester-only transaction is spread over the instalments
    of its semester that have no keyed transactions, so its amount is used
    once in total rather than once per instalment.
    """
    items = list(transactions)
    schedule = list(installments)
    results: Dict[InstallmentKey, Reconciliation] = {}

    fallback: Dict[int, List[Installment]] = defaultdict(list)
    for installment in schedule:
        owed = money(require_non_negative(installment.payable_amount, "payable amount"))
        exact = tuple(t for t in items if t.key == installment.key)
        if exact:
            approved = sum((t.amount for t in exact if t.is_approved), ZERO)
            waiting = sum((t.amount for t in exact if t.is_awaiting_verification), ZERO)
            results[installment.key] = _summarize(
                installment.key, owed, owed, exact, MatchedBy.INSTALLMENT, approved, waiting
            )
        else:
            fallback[installment.key.semester].append(installment)

    for semester, open_installments in fallback.items():
        open_installments.sort(key=lambda i: i.key.installment)
        semester_only = [t for t in items if t.key == SemesterKey(semester)]
        if semester_only:
            logger.debug(
                "Spreading %d semester-only transactions over %d instalments of semester %d",
                len(semester_only),
                len(open_installments),
                semester,
            )
            approved, waiting, attached = _spread_semester_payments(open_installments, semester_only)
        else:
            approved = {i.key: ZERO for i in open_installments}
            waiting = dict(approved)
            attached = {i.key: [] for i in open_installments}

        for installment in open_installments:
            key = installment.key
            owed = money(installment.payable_amount)
            matched = tuple(attached[key])
            matched_by = MatchedBy.SEMESTER if matched else MatchedBy.NONE
            results[key] = _summarize(key, owed, owed, matched, matched_by, approved[key], waiting[key])

    return {i.key: results[i.key] for i in schedule}


# -----------------------------
# Expected amount
# -----------------------------

def _instalment_count(fee_structure: FeeStructure, plan: PaymentPlan) -> int:
    if plan is PaymentPlan.ONE_SHOT:
        return 1
    if plan is PaymentPlan.SEM_WISE:
        return fee_structure.number_of_semesters
    return fee_structure.number_of_semesters * fee_structure.instalments_per_semester


def resolve_expected_amount(
    installment_key: InstallmentKey,
    fee_structure: Optional[FeeStructure],
    plan: Any,
    transactions: Iterable[PaymentTransaction] = (),
    scholarship_amount: Any = 0,
    as_of: Any = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> ExpectedAmount:
    """
    What one instalment should cost, for judging partial payments.

    Tried in order: the payable amount from a freshly computed schedule for
    the student's plan; the flat (program fee - admission fee) / N split;
    the largest transaction on file. When nothing works the amount is 0.
    """
    plan = PaymentPlan.parse(plan)
    if fee_structure is not None and plan.is_selected:
        try:
            breakdown = build_breakdown(fee_structure, plan, scholarship_amount, as_of, settings)
        except InvariantViolation as exc:
            logger.warning("Schedule recomputation failed for %s: %s", installment_key, exc)
        else:
            installment = breakdown.find(installment_key)
            if installment is not None:
                return ExpectedAmount(installment.payable_amount, ExpectedAmountSource.SCHEDULE)
            logger.warning("Instalment %s is not in the %s schedule", installment_key, plan.value)

    if fee_structure is not None and plan.is_selected:
        count = _instalment_count(fee_structure, plan)
        flat = money((fee_structure.total_program_fee - fee_structure.admission_fee) / count)
        if flat > 0:
            return ExpectedAmount(flat, ExpectedAmountSource.FLAT_FORMULA)

    matched, _ = match_transactions(transactions, installment_key)
    largest = max((t.amount for t in matched), default=ZERO)
    if largest > 0:
        return ExpectedAmount(largest, ExpectedAmountSource.LARGEST_TRANSACTION)

    logger.warning("No expected amount available for instalment %s", installment_key)
    return ExpectedAmount(ZERO, ExpectedAmountSource.UNAVAILABLE)


# -----------------------------
# Partial payments
# -----------------------------

@dataclass(frozen=True)
class PartialPaymentEntry:
    transaction: PaymentTransaction
    sequence_number: int
    label: str

    @property
    def amount(self) -> Decimal:
        return self.transaction.amount

    @property
    def status(self) -> VerificationStatus:
        return self.transaction.verification_status


@dataclass(frozen=True)
class PartialPaymentSummary:
    installment_key: InstallmentKey
    original_amount: Decimal
    total_paid: Decimal
    pending_amount: Decimal
    can_make_another_payment: bool
    history: Tuple[PartialPaymentEntry, ...]
    max_partial_payments: int

    @property
    def current_count(self) -> int:
        return len(self.history)

    @property
    def remaining_payments(self) -> int:
        return max(0, self.max_partial_payments - self.current_count)


def partial_payment_label(transaction: PaymentTransaction, position: int) -> str:
    """
    Display label. A stored sequence number is authoritative even when the
    amounts suggest the payment covered the whole instalment.
    """
    if transaction.partial_payment_sequence > 0:
        return f"Partial Payment #{transaction.partial_payment_sequence}"
    return f"Payment #{position}"


def _history_order(transaction: PaymentTransaction):
    created = transaction.created_at.timestamp() if transaction.created_at else 0.0
    return (transaction.partial_payment_sequence, created)


def partial_payment_history(transactions: Iterable[PaymentTransaction]) -> List[PartialPaymentEntry]:
    entries = []
    for position, tx in enumerate(sorted(transactions, key=_history_order), start=1):
        sequence = tx.partial_payment_sequence or position
        entries.append(PartialPaymentEntry(tx, sequence, partial_payment_label(tx, position)))
    return entries


def partial_payment_summary(
    transactions: Iterable[PaymentTransaction],
    installment_key: InstallmentKey,
    expected_amount: Any,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> PartialPaymentSummary:
    """
    Where a student stands on paying one instalment in parts.

    Rejected submissions stay in the history but do not count as paid.
    Another payment is allowed while something is still owed and the
    partial-payment limit has not been reached.
    """
    original = money(require_non_negative(expected_amount, "expected amount"))
    matched, _ = match_transactions(transactions, installment_key)
    history = partial_payment_history(matched)
    total_paid = sum((t.amount for t in matched if t.is_approved), ZERO)
    pending = max(ZERO, original - total_paid)

    return PartialPaymentSummary(
        installment_key=installment_key,
        original_amount=original,
        total_paid=total_paid,
        pending_amount=pending,
        can_make_another_payment=len(history) < settings.max_partial_payments and pending > 0,
        history=tuple(history),
        max_partial_payments=settings.max_partial_payments,
    )
