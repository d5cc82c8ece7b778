"""
Unit tests for log sanitization and the status transition formatter.
"""
import logging

from app.core.logging_config import StatusTransitionFormatter, sanitize_log_data


def test_sanitize_log_data_redacts_signatures_and_secrets():
    data = {
        "razorpay_subscription_id": "sub_1",
        "razorpay_signature": "abc123",
        "razorpay_key_secret": "shh",
    }

    sanitized = sanitize_log_data(data)

    assert sanitized["razorpay_subscription_id"] == "sub_1"
    assert sanitized["razorpay_signature"] == "***REDACTED***"
    assert sanitized["razorpay_key_secret"] == "***REDACTED***"
    assert data["razorpay_signature"] == "abc123"


def test_sanitize_log_data_handles_nested_payloads():
    payload = {
        "event": "subscription.charged",
        "payload": {"payment": {"entity": {"id": "pay_1", "token_id": "token_abc"}}},
        "items": [{"api_key": "k"}, "plain"],
    }

    sanitized = sanitize_log_data(payload)

    assert sanitized["event"] == "subscription.charged"
    assert sanitized["payload"]["payment"]["entity"] == {"id": "pay_1", "token_id": "***REDACTED***"}
    assert sanitized["items"] == [{"api_key": "***REDACTED***"}, "plain"]


def test_status_transition_formatter_appends_transition():
    formatter = StatusTransitionFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("app", logging.INFO, __file__, 1, "Status transition", None, None)
    record.status_transition = {"from": "ACTIVE", "to": "PAUSED", "allowed": True}

    line = formatter.format(record)

    assert line.startswith("INFO Status transition | status_transition=")
    assert "'to': 'PAUSED'" in line


def test_status_transition_formatter_leaves_plain_records():
    formatter = StatusTransitionFormatter("%(message)s")
    record = logging.LogRecord("app", logging.INFO, __file__, 1, "hello", None, None)

