import logging
import re
from datetime import date
from typing import Any, Dict, Mapping, Optional

from tuition_fee_engine.config import DEFAULT_ENGINE_SETTINGS, EngineSettings
from tuition_fee_engine.dates import add_months, parse_date
from tuition_fee_engine.models import FeeStructure, PaymentPlan

logger = logging.getLogger(__name__)

ONE_SHOT_KEY = "one-shot"
ADMISSION_KEY = "admission"

_FLAT_KEY = re.compile(r"^semester-(\d+)-instalment-(\d+)$")


def instalment_date_key(semester: int, index: int) -> str:
    """Flat date-map key; index is zero-based within the semester."""
    return f"semester-{semester}-instalment-{index}"


def default_due_dates(
    plan: PaymentPlan,
    start: date,
    number_of_semesters: int,
    instalments_per_semester: int,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> Dict[str, date]:
    """
    Generated due dates for a plan, anchored on the cohort start.

    One-shot is due immediately, semesters are spaced by the semester
    length, and instalments are spread evenly inside their semester.
    """
    months_per_semester = settings.semester_length_months
    out: Dict[str, date] = {}

    if plan is PaymentPlan.ONE_SHOT:
        out[ONE_SHOT_KEY] = start
    elif plan is PaymentPlan.SEM_WISE:
        for sem in range(1, number_of_semesters + 1):
            out[instalment_date_key(sem, 0)] = add_months(start, (sem - 1) * months_per_semester)
    elif plan is PaymentPlan.INSTALMENT_WISE:
        step = max(1, months_per_semester // instalments_per_semester)
        for sem in range(1, number_of_semesters + 1):
            for i in range(instalments_per_semester):
                offset = (sem - 1) * months_per_semester + i * step
                out[instalment_date_key(sem, i)] = add_months(start, offset)
    return out


def _put(out: Dict[str, date], key: str, raw: Any) -> None:
    try:
        parsed = parse_date(raw)
    except ValueError:
        logger.warning("Ignoring unparseable due date %r for %s", raw, key)
        return
    if parsed is not None:
        out[key] = parsed


def _number(text: str, prefix: str) -> Optional[int]:
    digits = text.replace(prefix, "").strip("_-")
    return int(digits) if digits.isdigit() else None


def normalize_date_map(raw: Optional[Mapping[str, Any]], plan: PaymentPlan) -> Dict[str, date]:
    """
    Convert a stored date map to flat keys with parsed dates.

    Saved maps come in two shapes:

      flat:   {"one-shot": ...} / {"program_fee_due_date": ...}
              {"semester-1-instalment-0": ...}
      nested: {"semesters": {"semester_1": {"due_date": ...}}}
              {"semesters": {"semester_1": {"installments": {"installment_1": ...}}}}

    An "admission" (or "admission_date") entry is kept for every plan.
    """
    out: Dict[str, date] = {}
    if not raw:
        return out

    for admission_key in ("admission", "admission_date"):
        if raw.get(admission_key):
            _put(out, ADMISSION_KEY, raw[admission_key])

    if plan is PaymentPlan.ONE_SHOT:
        nested = raw.get("one_shot") or raw.get("oneShot")
        if isinstance(nested, Mapping) and nested.get("program_fee_due_date"):
            _put(out, ONE_SHOT_KEY, nested["program_fee_due_date"])
        elif raw.get("program_fee_due_date"):
            _put(out, ONE_SHOT_KEY, raw["program_fee_due_date"])
        elif raw.get(ONE_SHOT_KEY):
            _put(out, ONE_SHOT_KEY, raw[ONE_SHOT_KEY])
        return out

    if plan not in (PaymentPlan.SEM_WISE, PaymentPlan.INSTALMENT_WISE):
        return out

    semesters = raw.get("semesters")
    if isinstance(semesters, Mapping):
        for sem_key, sem_data in semesters.items():
            sem = _number(str(sem_key), "semester")
            if sem is None:
                continue
            if isinstance(sem_data, str):
                # a bare date applies to the whole semester
                _put(out, instalment_date_key(sem, 0), sem_data)
                continue
            if not isinstance(sem_data, Mapping):
                continue
            if plan is PaymentPlan.SEM_WISE and sem_data.get("due_date"):
                _put(out, instalment_date_key(sem, 0), sem_data["due_date"])
            installments = sem_data.get("installments")
            if plan is PaymentPlan.INSTALMENT_WISE and isinstance(installments, Mapping):
                for inst_key, value in installments.items():
                    number = _number(str(inst_key), "installment")
                    if number:
                        _put(out, instalment_date_key(sem, number - 1), value)

    for key, value in raw.items():
        match = _FLAT_KEY.match(str(key))
        if not match:
            continue
        if plan is PaymentPlan.SEM_WISE and match.group(2) != "0":
            continue
        _put(out, key, value)

    return out


def resolve_due_dates(
    fee_structure: FeeStructure,
    plan: PaymentPlan,
    start: date,
    settings: EngineSettings = DEFAULT_ENGINE_SETTINGS,
) -> Dict[str, date]:
    """
    Saved dates for the plan, with anything missing filled from the defaults.

    start is only used for dates the fee structure does not configure.
    """
    generated = default_due_dates(
        plan,
        start,
        fee_structure.number_of_semesters,
        fee_structure.instalments_per_semester,
        settings,
    )
    saved = normalize_date_map(fee_structure.dates_for(plan), plan)
    missing = [key for key in generated if key not in saved]
    if saved and missing:
        logger.debug("Filling %d missing %s due dates from %s", len(missing), plan.value, start)
    return {**generated, **saved}
