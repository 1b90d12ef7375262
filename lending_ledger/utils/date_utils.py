"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, time


def last_day_of_month(year: int, month: int) -> int:
    """Number of days in the given month"""
    return calendar.monthrange(year, month)[1]


def add_months_clamped(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of the target month"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, last_day_of_month(year, month))
    return date(year, month, day)


def end_of_day(day: date) -> datetime:
    """23:59:59 on the given date"""
    return datetime.combine(day, time(23, 59, 59))


def start_of_day(day: date) -> datetime:
    """Midnight at the start of the given date"""
    return datetime.combine(day, time.min)


def as_naive_local(value: datetime) -> datetime:
    """Convert an aware datetime to naive local wall-clock time"""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
