"""
Unit tests for timestamp and billing period helpers.
"""
from datetime import datetime, timezone

from app.utils.date_utils import add_months, from_unix_timestamp, utc_now


def test_from_unix_timestamp_is_utc():
    assert from_unix_timestamp(1767225600) == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_from_unix_timestamp_missing_values():
    assert from_unix_timestamp(None) is None
    assert from_unix_timestamp(0) is None


def test_add_months_simple():
    assert add_months(datetime(2026, 1, 15), 1) == datetime(2026, 2, 15)
    assert add_months(datetime(2026, 1, 15), 12) == datetime(2027, 1, 15)


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)
    assert add_months(datetime(2028, 1, 31), 1) == datetime(2028, 2, 29)
    assert add_months(datetime(2026, 8, 31), 1) == datetime(2026, 9, 30)


def test_add_months_across_year_keeps_time_and_tz():
    start = datetime(2026, 11, 30, 9, 30, tzinfo=timezone.utc)
    assert add_months(start, 3) == datetime(2027, 2, 28, 9, 30, tzinfo=timezone.utc)


def test_utc_now_is_aware():
    assert utc_now().tzinfo is timezone.utc
