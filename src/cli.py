import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal
from typing import List, Optional

from tuition_fee_engine.config import load_settings
from tuition_fee_engine.engine import payment_view
from tuition_fee_engine.models import (
    FeeStructure,
    PaymentPlan,
    PaymentTransaction,
    VerificationStatus,
    json_default,
)
from tuition_fee_engine.money import format_inr
from tuition_fee_engine.status import status_label
from tuition_fee_engine.tables import schedule_frame, status_frame


def example_fee_structure() -> FeeStructure:
    # Hard-coded example cohort, used when no --fee-structure file is given.
    return FeeStructure(
        total_program_fee=Decimal("236000"),
        admission_fee=Decimal("59000"),
        number_of_semesters=4,
        instalments_per_semester=3,
        one_shot_discount_percentage=Decimal("5"),
        start_date=date(2025, 7, 1),
        cohort_id="example-cohort",
    )


def example_transactions() -> List[PaymentTransaction]:
    return [
        PaymentTransaction(
            id="tx-1",
            amount=Decimal("15000"),
            verification_status=VerificationStatus.APPROVED,
            installment_id="1-1",
            semester_number=1,
            payment_method="bank_transfer",
        ),
        PaymentTransaction(
            id="tx-2",
            amount=Decimal("5000"),
            verification_status=VerificationStatus.VERIFICATION_PENDING,
            installment_id="1-1",
            semester_number=1,
            partial_payment_sequence=2,
            payment_method="upi",
        ),
    ]


def _load_json(path: str):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Tuition fee schedule and payment status")
    ap.add_argument("--fee-structure", help="JSON file holding one fee structure record")
    ap.add_argument("--transactions", help="JSON file holding a list of transaction records")
    ap.add_argument(
        "--plan",
        default=PaymentPlan.INSTALMENT_WISE.value,
        choices=[p.value for p in PaymentPlan],
        help="payment plan (default: %(default)s)",
    )
    ap.add_argument("--scholarship", default="0", help="flat scholarship amount")
    ap.add_argument("--as-of", dest="as_of", help="evaluate statuses as of this date (YYYY-MM-DD)")
    ap.add_argument("--json", action="store_true", help="print the full view as JSON")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.fee_structure:
        fee_structure = FeeStructure.from_record(_load_json(args.fee_structure))
    else:
        fee_structure = example_fee_structure()

    if args.transactions:
        transactions = [PaymentTransaction.from_record(r) for r in _load_json(args.transactions)]
    elif args.fee_structure:
        transactions = []
    else:
        transactions = example_transactions()

    view = payment_view(
        fee_structure,
        args.plan,
        transactions,
        scholarship_amount=args.scholarship,
        as_of=args.as_of,
        settings=settings,
    )

    if args.json:
        print(json.dumps(view.to_dict(), default=json_default, indent=2))
        return 0

    summary = view.breakdown.overall_summary
    progress = view.progress

    print("=== Tuition Fee Schedule ===")
    print(f"Plan: {view.breakdown.plan.value}")
    print()
    print(schedule_frame(view.breakdown).to_string(index=False))
    print()
    print(status_frame(view).to_string(index=False))
    print()
    print(f"Total program fee:     {format_inr(summary.total_program_fee)}")
    print(f"Admission fee:         {format_inr(summary.admission_fee)}")
    print(f"Total GST:             {format_inr(summary.total_gst)}")
    print(f"Total discount:        {format_inr(summary.total_discount)}")
    print(f"Total scholarship:     {format_inr(summary.total_scholarship)}")
    print(f"Total amount payable:  {format_inr(summary.total_amount_payable)}")
    print()
    print(f"Paid so far:           {format_inr(progress.paid_amount)} ({progress.progress_percentage}%)")
    print(f"Still to pay:          {format_inr(progress.pending_amount)}")
    print(f"Payment status:        {status_label(view.payment_status)}")
    if view.next_due_date:
        print(f"Next due date:         {view.next_due_date.isoformat()}")
    if view.unallocated_transactions:
        ids = ", ".join(str(t.id) for t in view.unallocated_transactions)
        print(f"Unallocated transactions: {ids}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
