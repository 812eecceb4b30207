from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from tuition_fee_engine.models import InstallmentKey, PaymentPlan
from tuition_fee_engine.schedule import build_breakdown, empty_breakdown


def D(value):
    return Decimal(value)


def test_one_shot_scenario(cohort_structure):
    breakdown = build_breakdown(cohort_structure, PaymentPlan.ONE_SHOT)

    one_shot = breakdown.one_shot_payment
    assert one_shot is not None
    assert one_shot.key == InstallmentKey(1, 1)
    assert one_shot.base_amount == D("150000.00")
    assert one_shot.gst_amount == D("27000.00")
    assert one_shot.payable_amount == D("177000.00")
    assert one_shot.due_date == date(2025, 7, 1)
    assert breakdown.semesters == ()

    admission = breakdown.admission_fee
    assert admission.base_amount == D("50000.00")
    assert admission.gst_amount == D("9000.00")
    assert admission.total_payable == D("59000.00")

    summary = breakdown.overall_summary
    assert summary.total_amount_payable == D("236000.00")
    assert summary.total_gst == D("36000.00")
    assert summary.total_program_fee == D("236000.00")


def test_one_shot_discount_is_taken_before_gst(cohort_structure):
    structure = replace(cohort_structure, one_shot_discount_percentage=5)
    one_shot = build_breakdown(structure, PaymentPlan.ONE_SHOT).one_shot_payment
    assert one_shot.discount_amount == D("7500.00")
    assert one_shot.gst_amount == D("25650.00")
    assert one_shot.payable_amount == D("168150.00")


def test_semester_wise_scholarship_lands_on_last_semester(exclusive_structure):
    breakdown = build_breakdown(exclusive_structure, PaymentPlan.SEM_WISE, scholarship_amount=100000)

    assert [s.semester_number for s in breakdown.semesters] == [1, 2, 3, 4]
    first_three = [s.instalments[0] for s in breakdown.semesters[:3]]
    for inst in first_three:
        assert inst.base_amount == D("100000.00")
        assert inst.scholarship_amount == D("0.00")
        assert inst.gst_amount == D("18000.00")
        assert inst.payable_amount == D("118000.00")

    last = breakdown.semesters[3].instalments[0]
    assert last.scholarship_amount == D("100000.00")
    assert last.gst_amount == D("0.00")
    assert last.payable_amount == D("0.00")

    assert breakdown.overall_summary.total_scholarship == D("100000.00")
    assert breakdown.overall_summary.total_amount_payable == D("354000.00")
    assert breakdown.unallocated_scholarship == D("0.00")


def test_semester_dates_follow_cohort_start(exclusive_structure):
    breakdown = build_breakdown(exclusive_structure, PaymentPlan.SEM_WISE)
    assert [s.instalments[0].due_date for s in breakdown.semesters] == [
        date(2025, 7, 1),
        date(2026, 1, 1),
        date(2026, 7, 1),
        date(2027, 1, 1),
    ]


def test_equal_scholarship_distribution(exclusive_structure):
    structure = replace(exclusive_structure, equal_scholarship_distribution=True)
    breakdown = build_breakdown(structure, PaymentPlan.SEM_WISE, scholarship_amount=100000)
    for semester in breakdown.semesters:
        inst = semester.instalments[0]
        assert inst.scholarship_amount == D("25000.00")
        assert inst.gst_amount == D("13500.00")
        assert inst.payable_amount == D("88500.00")


def test_instalment_wise_uses_front_loaded_weights(cohort_structure):
    breakdown = build_breakdown(cohort_structure, PaymentPlan.INSTALMENT_WISE)

    assert len(breakdown.semesters) == 4
    first = breakdown.semesters[0].instalments
    assert [i.base_amount for i in first] == [D("15000.00"), D("15000.00"), D("7500.00")]
    assert [i.payable_amount for i in first] == [D("17700.00"), D("17700.00"), D("8850.00")]
    assert [i.due_date for i in first] == [date(2025, 7, 1), date(2025, 9, 1), date(2025, 11, 1)]
    assert breakdown.semesters[0].total.total_payable == D("44250.00")
    assert breakdown.overall_summary.total_amount_payable == D("236000.00")


def test_saved_dates_are_used(cohort_structure):
    structure = replace(
        cohort_structure,
        instalment_wise_dates={"semesters": {"semester_1": {"installments": {"installment_1": "10/07/2025"}}}},
    )
    breakdown = build_breakdown(structure, PaymentPlan.INSTALMENT_WISE)
    assert breakdown.find(InstallmentKey(1, 1)).due_date == date(2025, 7, 10)
    assert breakdown.find(InstallmentKey(1, 2)).due_date == date(2025, 9, 1)


def test_missing_start_date_anchors_on_as_of(cohort_structure):
    structure = replace(cohort_structure, start_date=None)
    breakdown = build_breakdown(structure, PaymentPlan.ONE_SHOT, as_of=date(2025, 9, 15))
    assert breakdown.one_shot_payment.due_date == date(2025, 9, 15)


def test_scholarship_larger_than_schedule_is_reported(cohort_structure):
    breakdown = build_breakdown(cohort_structure, PaymentPlan.ONE_SHOT, scholarship_amount=200000)
    one_shot = breakdown.one_shot_payment
    assert one_shot.scholarship_amount == D("150000.00")
    assert one_shot.payable_amount == D("0.00")
    assert breakdown.unallocated_scholarship == D("50000.00")
    assert breakdown.overall_summary.total_amount_payable == D("59000.00")


def test_no_fee_structure_gives_empty_breakdown():
    breakdown = build_breakdown(None, PaymentPlan.SEM_WISE)
    assert breakdown.is_empty
    assert breakdown.overall_summary.total_amount_payable == D("0.00")
    assert breakdown == empty_breakdown(PaymentPlan.SEM_WISE)


def test_unselected_plan_carries_admission_only(cohort_structure):
    breakdown = build_breakdown(cohort_structure, PaymentPlan.NOT_SELECTED)
    assert breakdown.is_empty
    assert breakdown.overall_summary.total_amount_payable == D("59000.00")


@pytest.mark.parametrize("plan", [PaymentPlan.ONE_SHOT, PaymentPlan.SEM_WISE, PaymentPlan.INSTALMENT_WISE])
@pytest.mark.parametrize(
    "total, admission, semesters, per_semester, scholarship, includes_gst",
    [
        ("236000", "59000", 4, 3, "0", True),
        ("100000", "11800", 3, 2, "12345.67", True),
        ("99999.99", "0", 5, 4, "33333.33", False),
        ("500000", "25000", 2, 5, "1000000", True),
        ("1", "0", 3, 3, "0.01", False),
    ],
)
def test_breakdown_invariants(plan, total, admission, semesters, per_semester, scholarship, includes_gst, cohort_structure):
    structure = replace(
        cohort_structure,
        total_program_fee=total,
        admission_fee=admission,
        number_of_semesters=semesters,
        instalments_per_semester=per_semester,
        program_fee_includes_gst=includes_gst,
    )
    breakdown = build_breakdown(structure, plan, scholarship_amount=scholarship)
    installments = list(breakdown.installments())

    # totals reconcile to the paisa
    assert breakdown.admission_fee.total_payable + sum(i.payable_amount for i in installments) == (
        breakdown.overall_summary.total_amount_payable
    )
    # scholarship never exceeds the grant, nor any one instalment
    assert sum(i.scholarship_amount for i in installments) <= D(scholarship)
    for inst in installments:
        assert inst.scholarship_amount <= inst.base_amount - inst.discount_amount
        assert inst.payable_amount >= 0
        assert inst.payable_amount == inst.base_amount + inst.gst_amount - inst.discount_amount - inst.scholarship_amount
    assert sum(i.scholarship_amount for i in installments) + breakdown.unallocated_scholarship == D(scholarship)


def test_breakdown_json_shape(cohort_structure):
    one_shot = build_breakdown(cohort_structure, PaymentPlan.ONE_SHOT).to_dict()
    assert set(one_shot) == {"admissionFee", "semesters", "oneShotPayment", "overallSummary"}
    assert one_shot["oneShotPayment"]["amountPayable"] == D("177000.00")
    assert one_shot["overallSummary"]["totalGST"] == D("36000.00")

    sem_wise = build_breakdown(cohort_structure, PaymentPlan.SEM_WISE).to_dict()
    assert "oneShotPayment" not in sem_wise
    assert sem_wise["semesters"][0]["semesterNumber"] == 1
    assert set(sem_wise["semesters"][0]["total"]) == {
        "baseAmount",
        "gstAmount",
        "discountAmount",
        "scholarshipAmount",
        "totalPayable",
    }
