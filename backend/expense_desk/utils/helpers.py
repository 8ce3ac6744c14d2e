"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
import re

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_iso_date(value: str | None) -> bool:
    """Return True for real calendar dates written exactly as ``YYYY-MM-DD``."""
    if not value or not _ISO_DATE.match(value):
        return False
    try:
        dt.date.fromisoformat(value)
    except ValueError:
        return False
    return True


def coerce_iso_date(value: str | None, today: dt.date | None = None) -> str:
    """Return ``value`` when it looks like an ISO date, else today's date."""
    if is_iso_date(value):
        return value  # type: ignore[return-value]
    return (today or dt.date.today()).isoformat()


def month_bounds(day: dt.date) -> tuple[dt.date, dt.date]:
    """Return the first day of ``day``'s month and of the following month."""
    start = day.replace(day=1)
    if start.month == 12:
        next_start = start.replace(year=start.year + 1, month=1)
    else:
        next_start = start.replace(month=start.month + 1)
    return start, next_start


def subtract_months(day: dt.date, months: int) -> dt.date:
    """Move ``day`` back by ``months`` calendar months, clamping the day."""
    year = day.year
    month = day.month - months
    while month <= 0:
        month += 12
        year -= 1
    _, next_start = month_bounds(dt.date(year, month, 1))
    last_day = (next_start - dt.timedelta(days=1)).day
    return dt.date(year, month, min(day.day, last_day))
