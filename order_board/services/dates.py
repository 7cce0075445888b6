"""Calendar helpers for the deadline picker."""
from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import List

from ..errors import ValidationError

YEARS_AHEAD = 5
# Discord select menus hold at most 25 options.
MAX_SELECT_OPTIONS = 25

MONTH_NAMES = [calendar.month_name[index] for index in range(1, 13)]


def year_options(today: date) -> List[int]:
    return list(range(today.year, today.year + YEARS_AHEAD + 1))


def days_in_month(year: int, month: int) -> int:
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")
    return calendar.monthrange(year, month)[1]


def day_options(year: int, month: int) -> List[int]:
    """Every selectable day of the given month, leap years included."""

    return list(range(1, days_in_month(year, month) + 1))


def day_option_chunks(year: int, month: int, size: int = MAX_SELECT_OPTIONS) -> List[List[int]]:
    days = day_options(year, month)
    return [days[index:index + size] for index in range(0, len(days), size)]


def ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def build_deadline(year: int, month: int, day: int, *, today: date) -> date:
    """Validate a picked date against the offered years and the month length."""

    if year not in year_options(today):
        raise ValidationError(f"Year {year} is outside the selectable range.")
    if day not in day_options(year, month):
        raise ValidationError(
            f"{MONTH_NAMES[month - 1]} {year} has no {ordinal(day)}."
        )
    picked = date(year, month, day)
    if picked < today:
        raise ValidationError("The deadline cannot be in the past.")
    return picked


def month_label(when: datetime) -> str:
    """Archive grouping name, e.g. ``2026 - October``."""

    return f"{when.year} - {MONTH_NAMES[when.month - 1]}"


__all__ = [
    "MONTH_NAMES",
    "MAX_SELECT_OPTIONS",
    "year_options",
    "days_in_month",
    "day_options",
    "day_option_chunks",
    "ordinal",
    "build_deadline",
    "month_label",
]
