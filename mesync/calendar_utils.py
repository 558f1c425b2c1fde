"""Calendar arithmetic on local, naive dates.

Distances count calendar-unit boundaries crossed between two days, not elapsed
time divided by a unit length: Sunday to the following Monday is one week,
Jan 31 to Feb 1 is one month.
"""
from datetime import date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta


def normalize_to_day(value: datetime | date) -> date:
    """Truncate a timestamp to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def start_of_day(value: datetime | date) -> datetime:
    return datetime.combine(normalize_to_day(value), time.min)


def at_time_of_day(day: date, at: time | None) -> datetime:
    """Compose a time of day onto a calendar day. No time means midnight."""
    if at is None:
        return start_of_day(day)
    return start_of_day(day) + relativedelta(hour=at.hour, minute=at.minute)


def day_distance(start: date, end: date) -> int:
    return (end - start).days


def week_start(d: date) -> date:
    """Return the Monday of the week containing date d."""
    return d - timedelta(days=d.weekday())


def week_distance(start: date, end: date) -> int:
    return (week_start(end) - week_start(start)).days // 7


def month_distance(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def iso_weekday(d: date) -> int:
    """Monday=1 .. Sunday=7."""
    return d.isoweekday()


def window_dates(start: datetime | date, days: int) -> list[date]:
    """Consecutive calendar days beginning with start's day."""
    first = normalize_to_day(start)
    return [first + timedelta(days=offset) for offset in range(max(0, days))]
