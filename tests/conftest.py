from datetime import date
from decimal import Decimal

import pytest

from tuition_fee_engine.models import FeeStructure, PaymentTransaction, VerificationStatus


@pytest.fixture
def cohort_structure():
    # 236,000 incl. GST, of which 59,000 is the admission fee
    return FeeStructure(
        total_program_fee=Decimal("236000"),
        admission_fee=Decimal("59000"),
        number_of_semesters=4,
        instalments_per_semester=3,
        start_date=date(2025, 7, 1),
        cohort_id="cohort-a",
    )


@pytest.fixture
def exclusive_structure():
    # program fee quoted before GST, no admission fee
    return FeeStructure(
        total_program_fee=Decimal("400000"),
        admission_fee=Decimal("0"),
        number_of_semesters=4,
        instalments_per_semester=1,
        program_fee_includes_gst=False,
        start_date=date(2025, 7, 1),
        cohort_id="cohort-b",
    )


@pytest.fixture
def make_tx():
    def _make(amount, status=VerificationStatus.APPROVED, installment_id=None, semester_number=None, **kwargs):
        return PaymentTransaction(
            amount=Decimal(str(amount)),
            verification_status=status,
            installment_id=installment_id,
            semester_number=semester_number,
            **kwargs,
        )

    return _make
