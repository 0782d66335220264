from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class Period:
    start: date
    end: date


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: int) -> date:
    """Shift ``base`` by ``months`` and land on ``desired_day``, snapped to month end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    return Period(first, first.replace(day=days_in_month(year, month)))


def months_before(today: date, months: int) -> date:
    return add_months(today, -months, desired_day=today.day)
