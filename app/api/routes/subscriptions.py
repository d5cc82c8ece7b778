"""
Subscription payment verification endpoint.

Called by the frontend after Razorpay checkout completes.
"""
import logging
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.logging_config import sanitize_log_data
from app.db.session import get_db
from app.schemas.subscription import (
    SubscriptionErrorResponse,
    SubscriptionSummary,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from app.services.payment_verification_service import PaymentVerificationError, verify_subscription_payment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])

REQUIRED_FIELDS = ("razorpay_subscription_id", "razorpay_payment_id", "razorpay_signature")


def _error_response(status_code: int, error: str, error_type: str, message: str = None, **extra) -> JSONResponse:
    body = SubscriptionErrorResponse(error=error, error_type=error_type, message=message).model_dump(exclude_none=True)
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


@router.post(
    "/verify-payment",
    response_model=VerifyPaymentResponse,
    responses={
        400: {"model": SubscriptionErrorResponse},
        404: {"model": SubscriptionErrorResponse},
        500: {"model": SubscriptionErrorResponse},
    },
)
def verify_payment(request: VerifyPaymentRequest, db: Session = Depends(get_db)):
    """
    Verify a Razorpay subscription payment and activate the subscription.

    The signature is an HMAC-SHA256 of ``payment_id|subscription_id`` keyed
    with the Razorpay key secret. No database write happens unless it matches.
    """
    logger.info(f"Payment verification request: {sanitize_log_data(request.model_dump())}")

    missing_fields = [name for name in REQUIRED_FIELDS if not getattr(request, name)]
    if missing_fields:
        logger.error(f"Missing required parameters: {missing_fields}")
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "Missing required parameters",
            "MISSING_PARAMETERS",
            missing_fields=missing_fields,
        )

    try:
        subscription = verify_subscription_payment(
            db,
            request.razorpay_subscription_id,
            request.razorpay_payment_id,
            request.razorpay_signature,
        )
    except PaymentVerificationError as e:
        return _error_response(e.status_code, e.error, e.error_type, e.message)
    except Exception:
        logger.exception("Payment verification error")
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error during payment verification",
            "INTERNAL_ERROR",
            "An unexpected error occurred while verifying the payment. "
            "Please try again or contact support.",
        )

    return VerifyPaymentResponse(
        status="ok",
        message="Payment verified successfully",
        subscription=SubscriptionSummary(
            id=subscription.id,
            status=subscription.status,
            payment_status=subscription.payment_status,
        ),
    )
