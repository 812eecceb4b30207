from typing import Any, Dict, List

import pandas as pd

from tuition_fee_engine.engine import ScheduleView
from tuition_fee_engine.models import Breakdown
from tuition_fee_engine.money import display_amount


# -----------------------------
# Presentation tables
# -----------------------------

def _amount(value: Any) -> float:
    # frames are for display only; engine figures stay Decimal
    return float(display_amount(value))


def schedule_frame(breakdown: Breakdown) -> pd.DataFrame:
    """
    One row per line of the breakdown: the admission fee first, then every
    instalment in due order.
    """
    data: List[Dict[str, Any]] = []

    admission = breakdown.admission_fee
    if admission.total_payable > 0:
        data.append(
            {
                "Semester": 0,
                "Instalment": 0,
                "Item": "Admission fee",
                "Due date": admission.due_date,
                "Base amount": _amount(admission.base_amount),
                "GST": _amount(admission.gst_amount),
                "Discount": 0.0,
                "Scholarship": 0.0,
                "Amount payable": _amount(admission.total_payable),
            }
        )

    for inst in breakdown.installments():
        if breakdown.one_shot_payment is not None:
            item = "One-shot payment"
        else:
            item = f"Semester {inst.semester_number} - Instalment {inst.installment_number}"
        data.append(
            {
                "Semester": inst.semester_number,
                "Instalment": inst.installment_number,
                "Item": item,
                "Due date": inst.due_date,
                "Base amount": _amount(inst.base_amount),
                "GST": _amount(inst.gst_amount),
                "Discount": _amount(inst.discount_amount),
                "Scholarship": _amount(inst.scholarship_amount),
                "Amount payable": _amount(inst.payable_amount),
            }
        )

    columns = [
        "Semester",
        "Instalment",
        "Item",
        "Due date",
        "Base amount",
        "GST",
        "Discount",
        "Scholarship",
        "Amount payable",
    ]
    df = pd.DataFrame(data, columns=columns)
    return df


def status_frame(view: ScheduleView) -> pd.DataFrame:
    """Per-instalment status table: what is owed, what has been paid, and where it stands."""
    data = []
    for item in view.installments:
        inst = item.installment
        data.append(
            {
                "Semester": inst.semester_number,
                "Instalment": inst.installment_number,
                "Due date": inst.due_date,
                "Days until due": item.days_until_due,
                "Amount payable": _amount(inst.payable_amount),
                "Paid": _amount(item.paid_amount),
                "Pending": _amount(item.pending_amount),
                "Status": item.status.value,
                "Status label": item.label,
            }
        )

    columns = [
        "Semester",
        "Instalment",
        "Due date",
        "Days until due",
        "Amount payable",
        "Paid",
        "Pending",
        "Status",
        "Status label",
    ]
    return pd.DataFrame(data, columns=columns)
