"""
Date helpers for follow-up deadlines and trend windows.
"""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Optional

# Relative deadline tokens resolved to the day after submission
URGENT_DEADLINE_TOKENS = {
    "asap",
    "as soon as possible",
    "immediately",
    "urgent",
    "tomorrow",
    "next day",
}

DEFAULT_DEADLINE_DAYS = 7

_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")


def parse_iso_date(value: str) -> Optional[date]:
    """
    Parse an ISO date or datetime string into a date.

    Returns None when the value is not an ISO 8601 date.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _ISO_DATE_PATTERN.match(text):
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def resolve_deadline(raw_deadline: object, submitted_on: date) -> date:
    """
    Resolve a follow-up deadline to a concrete date.

    Explicit ISO dates pass through unchanged. Urgent tokens such as "ASAP"
    resolve to the next calendar day after submission, "next week" to seven
    days later and "end of week" to the next Friday. Anything else falls
    back to the default follow-up window.

    Args:
        raw_deadline: Deadline value as returned by the model
        submitted_on: Date the transcript was submitted for

    Returns:
        Concrete deadline date
    """
    if isinstance(raw_deadline, datetime):
        return raw_deadline.date()
    if isinstance(raw_deadline, date):
        return raw_deadline

    if isinstance(raw_deadline, str):
        explicit = parse_iso_date(raw_deadline)
        if explicit is not None:
            return explicit

        token = " ".join(raw_deadline.strip().lower().rstrip(".!").split())
        if token in URGENT_DEADLINE_TOKENS:
            return submitted_on + timedelta(days=1)
        if token == "next week":
            return submitted_on + timedelta(days=7)
        if token in ("end of week", "end of the week", "eow"):
            days_ahead = (calendar.FRIDAY - submitted_on.weekday()) % 7 or 7
            return submitted_on + timedelta(days=days_ahead)

    return submitted_on + timedelta(days=DEFAULT_DEADLINE_DAYS)


def subtract_months(day: date, months: int) -> date:
    """Move a date back by whole calendar months, clamping the day of month."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))
