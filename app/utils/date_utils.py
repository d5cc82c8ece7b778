"""
Date helpers for Razorpay timestamps and billing periods.
"""
import calendar
from datetime import datetime, timezone
from typing import Optional, Union


def from_unix_timestamp(value: Optional[Union[int, float]]) -> Optional[datetime]:
    """Convert a Razorpay unix timestamp (seconds) to an aware UTC datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def add_months(date: datetime, months: int) -> datetime:
    """
    Add calendar months to date, clamping the day to the target month's length.

    Jan 31 + 1 month is Feb 28 (or 29), not early March.
    """
    month_index = date.month - 1 + months
    year = date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(date.day, calendar.monthrange(year, month)[1])
    return date.replace(year=year, month=month, day=day)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
