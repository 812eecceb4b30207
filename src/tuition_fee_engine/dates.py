from datetime import date, datetime
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d-%m-%Y")


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a due date coming from a record or a date map.

    Accepts date/datetime objects, ISO strings (with or without a time part)
    and the DD/MM/YYYY form some older records were saved with. Time of day
    is always dropped. Returns None for empty values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None

    for fmt in _DAY_FIRST_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            pass

    iso = text.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(iso).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValueError(f"unrecognised date: {value!r}")


def as_date(value: Any) -> date:
    """Like parse_date, but today when nothing is given."""
    parsed = parse_date(value)
    return parsed if parsed is not None else date.today()


def add_months(start: date, months: int) -> date:
    # relativedelta clamps to month end (Jan 31 + 1 month -> Feb 28/29)
    return start + relativedelta(months=months)


def days_until(due: date, as_of: Any = None) -> int:
    """Whole calendar days from as_of (default today) to due; negative once past."""
    return (due - as_date(as_of)).days
