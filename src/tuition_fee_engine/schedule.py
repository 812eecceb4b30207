import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tuition_fee_engine.calculations import (
    admission_fee_base,
    allocate_backwards,
    allocate_equally,
    calculate_discount,
    calculate_gst,
    extract_gst,
    instalment_distribution,
    remaining_program_base,
)
from tuition_fee_engine.config import DEFAULT_ENGINE_SETTINGS, EngineSettings
from tuition_fee_engine.dates import as_date
from tuition_fee_engine.due_dates import ADMISSION_KEY, ONE_SHOT_KEY, instalment_date_key, resolve_due_dates
from tuition_fee_engine.exceptions import InvariantViolation
from tuition_fee_engine.models import (
    AdmissionFee,
    Breakdown,
    FeeStructure,
    Installment,
    OverallSummary,
    PaymentPlan,
    Semester,
)
from tuition_fee_engine.money import ZERO, money, require_non_negative, split_amount

logger = logging.getLogger(__name__)


class _Slot:
    """An instalment before its scholarship is known."""

    __slots__ = ("semester", "number", "due_date", "base", "discount")

    def __init__(self, semester: int, number: int, due_date: Optional[date], base: Decimal, discount: Decimal):
        self.semester = semester
        self.number = number
        self.due_date = due_date
        self.base = base
        self.discount = discount

    @property
    def capacity(self) -> Decimal:
        return self.base - self.discount


def admission_fee_line(fee_structure: FeeStructure, due_date: Optional[date] = None) -> AdmissionFee:
    base = admission_fee_base(fee_structure)
    return AdmissionFee(
        base_amount=base,
        gst_amount=extract_gst(fee_structure.admission_fee),
        total_payable=fee_structure.admission_fee,
        due_date=due_date,
    )


def empty_breakdown(plan: PaymentPlan = PaymentPlan.NOT_SELECTED) -> Breakdown:
    """
    The "no schedule yet" breakdown: no instalments, every amount zero.

    Returned when there is no fee structure to work from; callers show an
    empty state rather than an error.
    """
    return Breakdown(plan=plan, admission_fee=AdmissionFee(), overall_summary=OverallSummary())


def _finalize(slots: Sequence[_Slot], scholarship: Decimal, equal_distribution: bool) -> Tuple[List[Installment], Decimal]:
    capacities = [slot.capacity for slot in slots]
    if equal_distribution:
        allocation = allocate_equally(capacities, scholarship)
    else:
        allocation = allocate_backwards(capacities, scholarship)

    installments = []
    for slot, applied in zip(slots, allocation):
        taxable = slot.capacity - applied
        gst = calculate_gst(taxable)
        installments.append(
            Installment(
                semester_number=slot.semester,
                installment_number=slot.number,
                due_date=slot.due_date,
                base_amount=slot.base,
                gst_amount=gst,
                discount_amount=slot.discount,
                scholarship_amount=applied,
                payable_amount=slot.base + gst - slot.discount - applied,
            )
        )

    allocated = sum(allocation, ZERO)
    if allocated > scholarship:
        raise InvariantViolation(f"allocated {allocated} of a {scholarship} scholarship")
    return installments, scholarship - allocated


def generate_one_shot(
    fee_structure: FeeStructure,
    scholarship_amount: Any,
    due_dates: Dict[str, date],
) -> Tuple[Installment, Decimal]:
    """
    Single payment for the whole program after the admission fee.

    The one-shot discount is taken on the base amount, the scholarship on
    what is left, and GST is charged on the net.

    Returns:
        (installment, unallocated scholarship)
    """
    base = remaining_program_base(fee_structure)
    discount = calculate_discount(base, fee_structure.one_shot_discount_percentage)
    slot = _Slot(1, 1, due_dates.get(ONE_SHOT_KEY), base, discount)
    installments, unallocated = _finalize([slot], money(scholarship_amount), equal_distribution=False)
    return installments[0], unallocated


def generate_semester_wise(
    fee_structure: FeeStructure,
    scholarship_amount: Any,
    due_dates: Dict[str, date],
) -> Tuple[List[Semester], Decimal]:
    """One instalment per semester, the remaining base split equally."""
    return _generate_semesters(fee_structure, scholarship_amount, due_dates, instalments_per_semester=1)


def generate_instalment_wise(
    fee_structure: FeeStructure,
    scholarship_amount: Any,
    due_dates: Dict[str, date],
) -> Tuple[List[Semester], Decimal]:
    """Each semester's share further split across its instalments."""
    return _generate_semesters(
        fee_structure,
        scholarship_amount,
        due_dates,
        instalments_per_semester=fee_structure.instalments_per_semester,
    )


def _generate_semesters(
    fee_structure: FeeStructure,
    scholarship_amount: Any,
    due_dates: Dict[str, date],
    instalments_per_semester: int,
) -> Tuple[List[Semester], Decimal]:
    remaining = remaining_program_base(fee_structure)
    semester_shares = split_amount(remaining, [1] * fee_structure.number_of_semesters)
    weights = instalment_distribution(instalments_per_semester)

    slots: List[_Slot] = []
    for sem, share in enumerate(semester_shares, start=1):
        for index, base in enumerate(split_amount(share, weights)):
            # discounts only apply to one-shot payments
            slots.append(_Slot(sem, index + 1, due_dates.get(instalment_date_key(sem, index)), base, ZERO))

    installments, unallocated = _finalize(
        slots,
        money(scholarship_amount),
        equal_distribution=fee_structure.equal_scholarship_distribution,
    )

    semesters = []
    for sem in range(1, fee_structure.number_of_semesters + 1):
        semesters.append(Semester(sem, tuple(i for i in installments if i.semester_number == sem)))
    return semesters, unallocated


def build_breakdown(
    fee_structure: Optional[FeeStructure],
    plan: PaymentPlan,
    scholarship_amount: Any = 0,
    as_of: Any = None,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> Breakdown:
    """
    Full fee breakdown for one plan.

    fee_structure:
        The student's custom structure when they have one, otherwise the
        cohort default. None yields the empty breakdown.
    scholarship_amount:
        Flat amount, allocated from the last instalment backwards (or evenly
        when the structure asks for equal distribution).
    as_of:
        Anchor for generated due dates when the structure has no start date.

    Returns:
        A Breakdown whose overall total is the admission fee plus every
        instalment's payable amount, to the paisa.
    """
    if fee_structure is None:
        logger.info("No fee structure available; returning empty breakdown")
        return empty_breakdown(plan)

    scholarship = money(require_non_negative(scholarship_amount, "scholarship amount"))
    start = fee_structure.start_date or as_date(as_of)
    due_dates = resolve_due_dates(fee_structure, plan, start, settings)
    admission = admission_fee_line(fee_structure, due_dates.get(ADMISSION_KEY))

    semesters: List[Semester] = []
    one_shot: Optional[Installment] = None
    unallocated = scholarship

    if plan is PaymentPlan.ONE_SHOT:
        one_shot, unallocated = generate_one_shot(fee_structure, scholarship, due_dates)
    elif plan is PaymentPlan.SEM_WISE:
        semesters, unallocated = generate_semester_wise(fee_structure, scholarship, due_dates)
    elif plan is PaymentPlan.INSTALMENT_WISE:
        semesters, unallocated = generate_instalment_wise(fee_structure, scholarship, due_dates)
    else:
        logger.info("Payment plan not selected; breakdown carries the admission fee only")

    draft = Breakdown(plan=plan, admission_fee=admission, semesters=tuple(semesters), one_shot_payment=one_shot)
    installments = list(draft.installments())

    summary = OverallSummary(
        total_program_fee=fee_structure.total_program_fee,
        admission_fee=admission.total_payable,
        total_gst=admission.gst_amount + sum((i.gst_amount for i in installments), ZERO),
        total_discount=sum((i.discount_amount for i in installments), ZERO),
        total_scholarship=sum((i.scholarship_amount for i in installments), ZERO),
        total_amount_payable=admission.total_payable + sum((i.payable_amount for i in installments), ZERO),
    )
    if summary.total_scholarship > scholarship:
        logger.error("Scholarship over-allocated: %s of %s", summary.total_scholarship, scholarship)
        raise InvariantViolation(f"scholarship over-allocated: {summary.total_scholarship} of {scholarship}")

    logger.debug(
        "Built %s breakdown: %d instalments, total payable %s",
        plan.value,
        len(installments),
        summary.total_amount_payable,
    )
    return Breakdown(
        plan=plan,
        admission_fee=admission,
        semesters=draft.semesters,
        one_shot_payment=one_shot,
        overall_summary=summary,
        unallocated_scholarship=unallocated if plan.is_selected else ZERO,
    )
