# milkpick/services/cadence.py
"""Calendar arithmetic for subscription cadences (UTC, day granularity)."""
from __future__ import annotations
import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional

MAX_OCCURRENCE_STEPS = 500

_DAY_STEPS = {"weekly": 7, "biweekly": 14}
_ISO_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def parse_date(value) -> Optional[date]:
    """Strict YYYY-MM-DD parsing; dates pass through, anything else is None."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _ISO_DAY.match(value.strip()):
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def add_months(d: date, months: int) -> date:
    # Clamp to the target month's last day (Jan 31 -> Feb 28/29)
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def next_date(d: Optional[date], frequency: str) -> Optional[date]:
    """One cadence step after `d`; None for a missing date or an unknown frequency."""
    if d is None:
        return None
    if frequency in _DAY_STEPS:
        return d + timedelta(days=_DAY_STEPS[frequency])
    if frequency == "monthly":
        return add_months(d, 1)
    return None


def next_occurrence_on_or_after(start: Optional[date], frequency: str, from_date: Optional[date]) -> Optional[date]:
    """First cadence date >= from_date, walking from start. None past MAX_OCCURRENCE_STEPS."""
    if start is None or from_date is None:
        return None
    current = start
    steps = 0
    while current < from_date:
        if steps >= MAX_OCCURRENCE_STEPS:
            return None
        current = next_date(current, frequency)
        if current is None:
            return None
        steps += 1
    return current


def upcoming_sequence(start: Optional[date], frequency: str, count: int, from_date: Optional[date]) -> Iterator[date]:
    """Preview only: yields up to `count` dates starting at the next occurrence."""
    current = next_occurrence_on_or_after(start, frequency, from_date)
    produced = 0
    while current is not None and produced < count:
        yield current
        produced += 1
        current = next_date(current, frequency)
