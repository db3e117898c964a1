"""Timezone and calendar helpers.

SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns while
PostgreSQL returns aware ones; everything is stored in UTC, so naive values
are read as UTC.
"""

import calendar
from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value, months: int = 1):
    """Same day N months later, clamped to that month's last day (Jan 31 -> Feb 28)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    _, num_days = calendar.monthrange(year, month)
    return value.replace(year=year, month=month, day=min(value.day, num_days))


def first_of_next_month(value: date) -> date:
    return add_months(value.replace(day=1), 1)


def at_midnight_utc(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)
