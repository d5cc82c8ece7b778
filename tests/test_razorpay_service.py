"""
Unit tests for Razorpay signature verification through the SDK.
"""
import hashlib
import hmac
import pytest

from app.core import config
from app.services.razorpay_service import verify_payment_signature, verify_webhook_signature


KEY_SECRET = "rzp_key_secret"
WEBHOOK_SECRET = "rzp_webhook_secret"


def sign(message: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


@pytest.fixture(autouse=True)
def razorpay_secrets(monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_KEY_ID", "rzp_test_key")
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", KEY_SECRET)
    monkeypatch.setattr(config, "RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)


def test_payment_signature_covers_payment_then_subscription():
    signature = sign(b"pay_1|sub_1", KEY_SECRET)

    assert verify_payment_signature("pay_1", "sub_1", signature) is True
    assert verify_payment_signature("sub_1", "pay_1", signature) is False


def test_payment_signature_with_other_secret_is_rejected():
    signature = sign(b"pay_1|sub_1", "not-the-key-secret")
    assert verify_payment_signature("pay_1", "sub_1", signature) is False


def test_payment_signature_missing_or_malformed():
    assert verify_payment_signature("pay_1", "sub_1", None) is False
    assert verify_payment_signature("pay_1", "sub_1", "") is False
    assert verify_payment_signature("pay_1", "sub_1", "not-hex") is False
    # Non-ASCII input makes compare_digest raise TypeError
    assert verify_payment_signature("pay_1", "sub_1", "sïgnature") is False


def test_payment_signature_requires_key_secret(monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", None)

    with pytest.raises(ValueError):
        verify_payment_signature("pay_1", "sub_1", "abc")


def test_webhook_signature_uses_raw_body():
    body = b'{"event": "subscription.activated"}'
    signature = sign(body, WEBHOOK_SECRET)

    assert verify_webhook_signature(body, signature) is True
    # Re-serialized JSON is a different byte string
    assert verify_webhook_signature(b'{"event":"subscription.activated"}', signature) is False


def test_webhook_signature_is_keyed_with_webhook_secret():
    body = b'{"event": "subscription.activated"}'
    assert verify_webhook_signature(body, sign(body, KEY_SECRET)) is False


def test_webhook_signature_missing_or_undecodable():
    assert verify_webhook_signature(b"{}", None) is False
    assert verify_webhook_signature(b"\xff\xfe", sign(b"\xff\xfe", WEBHOOK_SECRET)) is False


def test_webhook_signature_requires_secret(monkeypatch):
    monkeypatch.setattr(config, "RAZORPAY_WEBHOOK_SECRET", None)

    with pytest.raises(ValueError):
        verify_webhook_signature(b"{}", "abc")
