import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from tuition_fee_engine.dates import parse_date
from tuition_fee_engine.exceptions import (
    InvalidPaymentPlan,
    InvariantViolation,
    UnknownVerificationStatus,
)
from tuition_fee_engine.money import ZERO, money, require_non_negative


class PaymentPlan(str, Enum):
    ONE_SHOT = "one_shot"
    SEM_WISE = "sem_wise"
    INSTALMENT_WISE = "instalment_wise"
    NOT_SELECTED = "not_selected"

    @classmethod
    def parse(cls, raw: Any) -> "PaymentPlan":
        if isinstance(raw, cls):
            return raw
        if raw is None or not str(raw).strip() or str(raw).strip() == "undefined":
            return cls.NOT_SELECTED
        try:
            return cls(str(raw).strip())
        except ValueError:
            raise InvalidPaymentPlan(f"unknown payment plan: {raw!r}")

    @property
    def is_selected(self) -> bool:
        return self is not PaymentPlan.NOT_SELECTED


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PENDING_10_PLUS_DAYS = "pending_10_plus_days"
    UPCOMING = "upcoming"
    PARTIALLY_PAID_DAYS_LEFT = "partially_paid_days_left"
    OVERDUE = "overdue"
    PARTIALLY_PAID_OVERDUE = "partially_paid_overdue"
    VERIFICATION_PENDING = "verification_pending"
    PARTIALLY_PAID_VERIFICATION_PENDING = "partially_paid_verification_pending"
    PAID = "paid"
    WAIVED = "waived"
    PARTIALLY_WAIVED = "partially_waived"
    NOT_SETUP = "not_setup"


class VerificationStatus(str, Enum):
    VERIFICATION_PENDING = "verification_pending"
    PENDING = "pending"                  # legacy spelling of verification_pending
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_APPROVED = "partially_approved"

    @classmethod
    def parse(cls, raw: Any) -> "VerificationStatus":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise UnknownVerificationStatus(f"unknown verification status: {raw!r}")


# Statuses whose amount counts as money received.
APPROVED_STATUSES = frozenset({VerificationStatus.APPROVED, VerificationStatus.PARTIALLY_APPROVED})
# Statuses still waiting on staff.
AWAITING_STATUSES = frozenset({VerificationStatus.VERIFICATION_PENDING, VerificationStatus.PENDING})


class StructureType(str, Enum):
    COHORT = "cohort"
    CUSTOM = "custom"


# -----------------------------
# Installment keys
# -----------------------------

@dataclass(frozen=True, order=True)
class InstallmentKey:
    """A transaction aimed at one specific instalment of one semester."""
    semester: int
    installment: int

    def __post_init__(self):
        if self.semester < 1 or self.installment < 1:
            raise ValueError(f"semester and instalment numbers start at 1: {self.semester}-{self.installment}")

    def __str__(self) -> str:
        return f"{self.semester}-{self.installment}"


@dataclass(frozen=True, order=True)
class SemesterKey:
    """A legacy transaction that only says which semester it was for."""
    semester: int

    def __post_init__(self):
        if self.semester < 1:
            raise ValueError(f"semester numbers start at 1: {self.semester}")

    def __str__(self) -> str:
        return str(self.semester)


TransactionKey = Union[InstallmentKey, SemesterKey]

_NUMBER_TOKEN = re.compile(r"\d+")


def parse_transaction_key(installment_id: Any, semester_number: Any) -> Optional[TransactionKey]:
    """
    Work out what a transaction was paying for.

    installment_id is normally "{semester}-{installment}"; the last number is
    always the instalment. An explicit semester_number wins over the first
    token. Without a usable installment_id we fall back to the semester alone.
    """
    semester = int(semester_number) if semester_number not in (None, "", 0) else None
    tokens = _NUMBER_TOKEN.findall(str(installment_id)) if installment_id not in (None, "") else []

    if tokens:
        installment = int(tokens[-1])
        if semester is None and len(tokens) >= 2:
            semester = int(tokens[0])
        if semester and installment:
            return InstallmentKey(semester, installment)

    if semester:
        return SemesterKey(semester)
    return None


# -----------------------------
# Inputs
# -----------------------------

def _frozen_mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if value else {}


@dataclass(frozen=True)
class FeeStructure:
    """
    Fee configuration for a cohort, or a per-student override of it.

    Amounts are as configured by admins: total_program_fee already includes
    the admission fee, and both include GST unless program_fee_includes_gst
    is turned off (the admission fee always includes GST).
    """
    total_program_fee: Decimal
    admission_fee: Decimal
    number_of_semesters: int
    instalments_per_semester: int
    one_shot_discount_percentage: Decimal = Decimal("0")
    program_fee_includes_gst: bool = True
    equal_scholarship_distribution: bool = False
    start_date: Optional[date] = None    # cohort start, anchor for generated due dates
    one_shot_dates: Mapping[str, Any] = field(default_factory=dict, hash=False)
    sem_wise_dates: Mapping[str, Any] = field(default_factory=dict, hash=False)
    instalment_wise_dates: Mapping[str, Any] = field(default_factory=dict, hash=False)
    cohort_id: Optional[str] = None
    student_id: Optional[str] = None
    structure_type: StructureType = StructureType.COHORT

    def __post_init__(self):
        object.__setattr__(self, "total_program_fee", money(require_non_negative(self.total_program_fee, "total program fee")))
        object.__setattr__(self, "admission_fee", money(require_non_negative(self.admission_fee, "admission fee")))
        object.__setattr__(
            self,
            "one_shot_discount_percentage",
            require_non_negative(self.one_shot_discount_percentage, "one-shot discount percentage"),
        )
        if self.one_shot_discount_percentage > 100:
            raise InvariantViolation(f"one-shot discount above 100%: {self.one_shot_discount_percentage}")
        if int(self.number_of_semesters) < 1:
            raise ValueError(f"number_of_semesters must be at least 1, got {self.number_of_semesters}")
        if int(self.instalments_per_semester) < 1:
            raise ValueError(f"instalments_per_semester must be at least 1, got {self.instalments_per_semester}")
        object.__setattr__(self, "number_of_semesters", int(self.number_of_semesters))
        object.__setattr__(self, "instalments_per_semester", int(self.instalments_per_semester))
        object.__setattr__(self, "start_date", parse_date(self.start_date))
        object.__setattr__(self, "structure_type", StructureType(self.structure_type))
        for name in ("one_shot_dates", "sem_wise_dates", "instalment_wise_dates"):
            object.__setattr__(self, name, _frozen_mapping(getattr(self, name)))

    @property
    def is_custom(self) -> bool:
        return self.structure_type is StructureType.CUSTOM

    def dates_for(self, plan: PaymentPlan) -> Mapping[str, Any]:
        if plan is PaymentPlan.ONE_SHOT:
            return self.one_shot_dates
        if plan is PaymentPlan.SEM_WISE:
            return self.sem_wise_dates
        if plan is PaymentPlan.INSTALMENT_WISE:
            return self.instalment_wise_dates
        return {}

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "FeeStructure":
        """Build from a fee_structures row (snake_case column names)."""
        return cls(
            total_program_fee=record.get("total_program_fee"),
            admission_fee=record.get("admission_fee"),
            number_of_semesters=record.get("number_of_semesters") or 1,
            instalments_per_semester=record.get("instalments_per_semester") or 1,
            one_shot_discount_percentage=record.get("one_shot_discount_percentage") or 0,
            program_fee_includes_gst=record.get("program_fee_includes_gst", True) is not False,
            equal_scholarship_distribution=bool(record.get("equal_scholarship_distribution", False)),
            start_date=record.get("start_date"),
            one_shot_dates=record.get("one_shot_dates") or {},
            sem_wise_dates=record.get("sem_wise_dates") or {},
            instalment_wise_dates=record.get("instalment_wise_dates") or {},
            cohort_id=record.get("cohort_id"),
            student_id=record.get("student_id"),
            structure_type=record.get("structure_type") or StructureType.COHORT,
        )


@dataclass(frozen=True)
class PaymentTransaction:
    """One payment submission, as stored by the payments backend."""
    amount: Decimal
    verification_status: VerificationStatus
    id: Optional[str] = None
    payment_method: Optional[str] = None
    installment_id: Optional[str] = None   # "{semester}-{installment}"
    semester_number: Optional[int] = None
    partial_payment_sequence: int = 0      # nonzero: one of several partials for one instalment
    created_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "amount", money(require_non_negative(self.amount, "transaction amount")))
        object.__setattr__(self, "verification_status", VerificationStatus.parse(self.verification_status))
        object.__setattr__(self, "partial_payment_sequence", int(self.partial_payment_sequence or 0))
        if self.semester_number in ("", 0):
            object.__setattr__(self, "semester_number", None)
        elif self.semester_number is not None:
            object.__setattr__(self, "semester_number", int(self.semester_number))
        if isinstance(self.created_at, str):
            object.__setattr__(self, "created_at", datetime.fromisoformat(self.created_at.replace("Z", "+00:00")))

    @property
    def key(self) -> Optional[TransactionKey]:
        return parse_transaction_key(self.installment_id, self.semester_number)

    @property
    def is_approved(self) -> bool:
        return self.verification_status in APPROVED_STATUSES

    @property
    def is_awaiting_verification(self) -> bool:
        return self.verification_status in AWAITING_STATUSES

    @property
    def is_partial_submission(self) -> bool:
        return self.partial_payment_sequence > 0

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PaymentTransaction":
        return cls(
            amount=record.get("amount"),
            verification_status=record.get("verification_status") or VerificationStatus.VERIFICATION_PENDING,
            id=record.get("id"),
            payment_method=record.get("payment_method"),
            installment_id=record.get("installment_id"),
            semester_number=record.get("semester_number"),
            partial_payment_sequence=record.get("partial_payment_sequence") or 0,
            created_at=record.get("created_at"),
        )


# -----------------------------
# Computed schedule
# -----------------------------

def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Installment:
    """One due payment. Always computed, never stored."""
    semester_number: int
    installment_number: int
    due_date: Optional[date]
    base_amount: Decimal
    gst_amount: Decimal
    discount_amount: Decimal
    scholarship_amount: Decimal
    payable_amount: Decimal
    status_override: Optional[InstallmentStatus] = None   # admin waiver etc., set outside the engine

    def __post_init__(self):
        expected = self.base_amount + self.gst_amount - self.discount_amount - self.scholarship_amount
        if self.payable_amount != expected:
            raise InvariantViolation(
                f"instalment {self.key}: payable {self.payable_amount} != "
                f"base + GST - discount - scholarship ({expected})"
            )
        if self.payable_amount < 0:
            raise InvariantViolation(f"instalment {self.key}: negative payable {self.payable_amount}")

    @property
    def key(self) -> InstallmentKey:
        return InstallmentKey(self.semester_number, self.installment_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "semesterNumber": self.semester_number,
            "installmentNumber": self.installment_number,
            "paymentDate": _iso(self.due_date),
            "baseAmount": self.base_amount,
            "gstAmount": self.gst_amount,
            "discountAmount": self.discount_amount,
            "scholarshipAmount": self.scholarship_amount,
            "amountPayable": self.payable_amount,
        }


@dataclass(frozen=True)
class AmountTotals:
    base_amount: Decimal = ZERO
    gst_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    scholarship_amount: Decimal = ZERO
    total_payable: Decimal = ZERO

    @classmethod
    def of(cls, installments) -> "AmountTotals":
        items = list(installments)
        return cls(
            base_amount=sum((i.base_amount for i in items), ZERO),
            gst_amount=sum((i.gst_amount for i in items), ZERO),
            discount_amount=sum((i.discount_amount for i in items), ZERO),
            scholarship_amount=sum((i.scholarship_amount for i in items), ZERO),
            total_payable=sum((i.payable_amount for i in items), ZERO),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseAmount": self.base_amount,
            "gstAmount": self.gst_amount,
            "discountAmount": self.discount_amount,
            "scholarshipAmount": self.scholarship_amount,
            "totalPayable": self.total_payable,
        }


@dataclass(frozen=True)
class AdmissionFee:
    """Admission fee line: always due in full, never discounted."""
    base_amount: Decimal = ZERO
    gst_amount: Decimal = ZERO
    total_payable: Decimal = ZERO
    due_date: Optional[date] = None

    # kept so the line has the same shape as every other amount block
    discount_amount: Decimal = ZERO
    scholarship_amount: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseAmount": self.base_amount,
            "gstAmount": self.gst_amount,
            "discountAmount": self.discount_amount,
            "scholarshipAmount": self.scholarship_amount,
            "totalPayable": self.total_payable,
            "paymentDate": _iso(self.due_date),
        }


@dataclass(frozen=True)
class Semester:
    semester_number: int
    instalments: Tuple[Installment, ...]

    @property
    def total(self) -> AmountTotals:
        return AmountTotals.of(self.instalments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "semesterNumber": self.semester_number,
            "instalments": [i.to_dict() for i in self.instalments],
            "total": self.total.to_dict(),
        }


@dataclass(frozen=True)
class OverallSummary:
    total_program_fee: Decimal = ZERO
    admission_fee: Decimal = ZERO
    total_gst: Decimal = ZERO
    total_discount: Decimal = ZERO
    total_scholarship: Decimal = ZERO
    total_amount_payable: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalProgramFee": self.total_program_fee,
            "admissionFee": self.admission_fee,
            "totalGST": self.total_gst,
            "totalDiscount": self.total_discount,
            "totalScholarship": self.total_scholarship,
            "totalAmountPayable": self.total_amount_payable,
        }


@dataclass(frozen=True)
class Breakdown:
    """Everything a student owes under one plan, derived fresh on each call."""
    plan: PaymentPlan
    admission_fee: AdmissionFee
    semesters: Tuple[Semester, ...] = ()
    one_shot_payment: Optional[Installment] = None
    overall_summary: OverallSummary = field(default_factory=OverallSummary)
    unallocated_scholarship: Decimal = ZERO

    def installments(self) -> Iterator[Installment]:
        """All schedule instalments in due order; a one-shot payment is semester 1, instalment 1."""
        if self.one_shot_payment is not None:
            yield self.one_shot_payment
        for semester in self.semesters:
            yield from semester.instalments

    def find(self, key: InstallmentKey) -> Optional[Installment]:
        for installment in self.installments():
            if installment.key == key:
                return installment
        return None

    @property
    def is_empty(self) -> bool:
        return self.one_shot_payment is None and not self.semesters

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "admissionFee": self.admission_fee.to_dict(),
            "semesters": [s.to_dict() for s in self.semesters],
            "overallSummary": self.overall_summary.to_dict(),
        }
        if self.one_shot_payment is not None:
            data["oneShotPayment"] = self.one_shot_payment.to_dict()
        return data


def json_default(value: Any) -> Any:
    """json.dumps hook for Decimal and date values in to_dict() output."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"{type(value).__name__} is not JSON serializable")
