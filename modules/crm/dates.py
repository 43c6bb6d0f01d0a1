"""Natural-language date parsing for deadlines and due dates."""

from __future__ import annotations

import datetime as dt
import re
from typing import Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

_WEEKDAYS = {
    "monday": 0,
    "mon": 0,
    "tuesday": 1,
    "tue": 1,
    "tues": 1,
    "wednesday": 2,
    "wed": 2,
    "thursday": 3,
    "thu": 3,
    "thur": 3,
    "thurs": 3,
    "friday": 4,
    "fri": 4,
    "saturday": 5,
    "sat": 5,
    "sunday": 6,
    "sun": 6,
}

_IN_RE = re.compile(r"^in\s+(\d{1,3})\s+(day|days|week|weeks|month|months|year|years)$")
_WEEKDAY_RE = re.compile(r"^(?:(next|this|on)\s+)?([a-z]+)$")
_UNITS = {
    "day": "days",
    "week": "weeks",
    "month": "months",
    "year": "years",
}


def _next_weekday(today: dt.date, weekday: int, *, skip_this_week: bool) -> dt.date:
    ahead = (weekday - today.weekday()) % 7
    if ahead == 0:
        ahead = 7
    elif skip_this_week and ahead < 7 - today.weekday():
        # "next friday" on a monday means the friday of the following week
        ahead += 7
    return today + dt.timedelta(days=ahead)


def parse_natural_date(text: str | None, today: dt.date | None = None) -> Optional[dt.date]:
    """Turn free text into a calendar date; ``None`` when it cannot be understood."""

    raw = " ".join((text or "").strip().lower().split())
    if not raw:
        return None
    today = today or dt.date.today()

    if raw == "today":
        return today
    if raw in {"tomorrow", "tmrw"}:
        return today + dt.timedelta(days=1)
    if raw == "yesterday":
        return today - dt.timedelta(days=1)
    if raw == "next week":
        return today + dt.timedelta(weeks=1)
    if raw == "next month":
        return today + relativedelta(months=1)
    if raw in {"end of month", "eom", "end of the month"}:
        return today + relativedelta(day=31)
    if raw in {"end of week", "eow", "end of the week"}:
        return today + dt.timedelta(days=(4 - today.weekday()) % 7)

    match = _IN_RE.match(raw)
    if match:
        amount = int(match.group(1))
        unit = _UNITS[match.group(2).rstrip("s")]
        return today + relativedelta(**{unit: amount})

    match = _WEEKDAY_RE.match(raw)
    if match and match.group(2) in _WEEKDAYS:
        return _next_weekday(
            today,
            _WEEKDAYS[match.group(2)],
            skip_this_week=match.group(1) == "next",
        )

    try:
        default = dt.datetime.combine(today, dt.time())
        parsed = date_parser.parse(raw, default=default, dayfirst=False, fuzzy=False)
    except (ValueError, OverflowError):
        return None
    return parsed.date()


def parse_iso_date(value: str | None) -> Optional[dt.date]:
    """Strict ``YYYY-MM-DD`` reader used for values stored in the sheet."""

    text = (value or "").strip()
    if not text:
        return None
    try:
        return dt.date.fromisoformat(text[:10])
    except ValueError:
        return parse_natural_date(text)


def format_date(value: dt.date | None) -> str:
    """``Dec 15, 2025``; empty string for ``None``."""

    if value is None:
        return ""
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def days_until(value: dt.date | None, today: dt.date | None = None) -> Optional[int]:
    if value is None:
        return None
    today = today or dt.date.today()
    return (value - today).days


__all__ = ["days_until", "format_date", "parse_iso_date", "parse_natural_date"]
