"""
Razorpay SDK integration.

Signature checks for the checkout callback and for webhook deliveries go
through the official ``razorpay`` client.
"""
import logging
from typing import Optional

import razorpay
from razorpay.errors import SignatureVerificationError

from app.core import config

logger = logging.getLogger(__name__)


def get_razorpay_client() -> razorpay.Client:
    """Client authenticated with the configured key pair."""
    return razorpay.Client(auth=(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET))


def verify_payment_signature(
    razorpay_payment_id: str,
    razorpay_subscription_id: str,
    razorpay_signature: Optional[str],
) -> bool:
    """
    Verify the signature returned by Razorpay checkout for a subscription payment.

    Razorpay signs ``payment_id|subscription_id`` with the key secret.

    Args:
        razorpay_payment_id: Razorpay payment ID
        razorpay_subscription_id: Razorpay subscription ID
        razorpay_signature: Signature received from the client

    Returns:
        True if the signature is authentic

    Raises:
        ValueError: If RAZORPAY_KEY_SECRET is not configured
    """
    if not config.RAZORPAY_KEY_SECRET:
        raise ValueError("RAZORPAY_KEY_SECRET not configured")
    if not razorpay_signature:
        return False

    try:
        get_razorpay_client().utility.verify_subscription_payment_signature({
            "razorpay_subscription_id": razorpay_subscription_id,
            "razorpay_payment_id": razorpay_payment_id,
            "razorpay_signature": razorpay_signature,
        })
    except SignatureVerificationError as e:
        logger.error(f"Payment signature verification failed: {e}")
        return False
    except TypeError as e:
        # hmac.compare_digest rejects non-ASCII signatures
        logger.error(f"Malformed payment signature: {e}")
        return False
    return True


def verify_webhook_signature(request_body: bytes, signature: Optional[str]) -> bool:
    """
    Verify the X-Razorpay-Signature header against the raw request body.

    Args:
        request_body: Raw request body bytes, exactly as received
        signature: X-Razorpay-Signature header value

    Returns:
        True if the delivery is authentic

    Raises:
        ValueError: If RAZORPAY_WEBHOOK_SECRET is not configured
    """
    if not config.RAZORPAY_WEBHOOK_SECRET:
        raise ValueError("RAZORPAY_WEBHOOK_SECRET not configured")
    if not signature:
        return False

    try:
        get_razorpay_client().utility.verify_webhook_signature(
            request_body.decode("utf-8"), signature, config.RAZORPAY_WEBHOOK_SECRET
        )
    except SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        return False
    except (TypeError, UnicodeDecodeError) as e:
        logger.error(f"Malformed webhook signature or body: {e}")
        return False
    return True
