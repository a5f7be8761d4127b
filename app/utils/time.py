"""Time Utilities for UTC management"""

from datetime import date, datetime, timezone
from typing import Tuple


def get_utc_now() -> datetime:
    """
    Returns a naive UTC datetime.
    Matches the DB schema (TIMESTAMP WITHOUT TIME ZONE).
    Avoids 'datetime.utcnow()' deprecation warnings.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_utc_today() -> date:
    """Business date used by due-date comparisons and scheduled jobs."""
    return get_utc_now().date()


def parse_billing_month(value: str) -> date:
    """Parse 'YYYY-MM' into the first day of that month."""
    try:
        year_str, month_str = value.split("-")
        return date(int(year_str), int(month_str), 1)
    except (ValueError, AttributeError):
        raise ValueError(f"billing month must be YYYY-MM, got {value!r}")


def month_bounds(first_day: date) -> Tuple[date, date]:
    """Return [start, end) of the month starting at ``first_day``."""
    start = first_day.replace(day=1)
    if start.month == 12:
        end = date(start.year + 1, 1, 1)
    else:
        end = date(start.year, start.month + 1, 1)
    return start, end
