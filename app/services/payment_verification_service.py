"""
Payment verification for the Razorpay checkout callback.

The frontend posts the ids and signature returned by checkout; a valid
signature activates the subscription and opens a new billing period.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models.subscription_event import SubscriptionEvent
from app.db.models.subscription_plan import SubscriptionPlan
from app.db.models.user_subscription import PaymentStatus, SubscriptionStatus, UserSubscription
from app.db.session import transaction
from app.schemas.subscription import Increment, SubscriptionUpdate
from app.services.razorpay_service import verify_payment_signature
from app.services.subscription_status import SubscriptionNotFoundError, safe_update_subscription_status
from app.utils.date_utils import add_months, utc_now

logger = logging.getLogger(__name__)


class PaymentVerificationError(ValueError):
    """Verification failed before any database write."""

    def __init__(self, error: str, error_type: str, status_code: int, message: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.error_type = error_type
        self.status_code = status_code
        self.message = message


def compute_period_end(db: Session, plan_id: int, start: datetime) -> datetime:
    """
    End of the billing period that starts at start.

    billing_cycle is stored in months; a missing plan or a non-positive cycle
    leaves the end equal to start.
    """
    plan = db.get(SubscriptionPlan, plan_id)
    if not plan:
        logger.warning(f"Plan not found for billing period: plan_id={plan_id}")
        return start

    try:
        billing_months = int(plan.billing_cycle)
    except (TypeError, ValueError):
        logger.warning(f"Invalid billing cycle on plan_id={plan_id}: {plan.billing_cycle!r}")
        return start

    if billing_months <= 0:
        return start
    return add_months(start, billing_months)


def verify_subscription_payment(
    db: Session,
    razorpay_subscription_id: str,
    razorpay_payment_id: str,
    razorpay_signature: str,
    now: Optional[datetime] = None,
) -> UserSubscription:
    """
    Verify a checkout signature and activate the subscription.

    Args:
        db: Database session
        razorpay_subscription_id: Razorpay subscription ID
        razorpay_payment_id: Razorpay payment ID
        razorpay_signature: Signature returned by checkout
        now: Start of the new billing period (defaults to the current UTC time)

    Returns:
        The subscription as persisted after verification

    Raises:
        PaymentVerificationError: Unknown subscription, missing secret or bad signature
        SubscriptionNotFoundError: If the row disappeared while being updated
    """
    subscription = db.query(UserSubscription).filter(
        UserSubscription.razorpay_subscription_id == razorpay_subscription_id
    ).first()

    if not subscription:
        logger.error(f"Subscription not found: razorpay_subscription_id={razorpay_subscription_id}")
        raise PaymentVerificationError("Subscription not found", "SUBSCRIPTION_NOT_FOUND", 404)

    logger.info(
        f"Found subscription: id={subscription.id}, user_id={subscription.user_id}, "
        f"status={subscription.status.value}, payment_status={subscription.payment_status}"
    )

    try:
        signature_valid = verify_payment_signature(razorpay_payment_id, razorpay_subscription_id, razorpay_signature)
    except ValueError as e:
        logger.error(f"Payment verification unavailable: {e}")
        raise PaymentVerificationError("Payment provider not configured", "CONFIGURATION_ERROR", 500)

    if not signature_valid:
        logger.error(
            f"Signature verification failed: razorpay_subscription_id={razorpay_subscription_id}, "
            f"razorpay_payment_id={razorpay_payment_id}"
        )
        raise PaymentVerificationError(
            "Payment signature verification failed",
            "SIGNATURE_VERIFICATION_FAILED",
            400,
            "The payment signature could not be verified. "
            "This may indicate a tampered payment or configuration issue.",
        )

    now = now or utc_now()
    current_end = compute_period_end(db, subscription.plan_id, now)

    subscription_pk = subscription.id
    user_id = subscription.user_id
    plan_id = subscription.plan_id

    updated: Optional[UserSubscription] = None
    try:
        with transaction(db):
            updated = safe_update_subscription_status(
                db,
                subscription_pk,
                SubscriptionStatus.ACTIVE,
                SubscriptionUpdate(
                    payment_status=PaymentStatus.COMPLETED,
                    current_start=now,
                    current_end=current_end,
                    paid_count=Increment(by=1),
                    remaining_count=Increment(by=-1),
                ),
            )
    except SQLAlchemyError as e:
        # A webhook for the same subscription may have won the row lock
        logger.warning(f"Race condition detected in verify-payment: subscription_id={subscription_pk}, error={e}")

    if updated is None:
        updated = db.query(UserSubscription).filter(UserSubscription.id == subscription_pk).first()
        if not updated:
            raise SubscriptionNotFoundError(f"Subscription not found after race condition: {subscription_pk}")

    logger.info(
        f"Subscription activated: subscription_id={updated.id}, user_id={updated.user_id}, "
        f"status={updated.status.value}, payment_status={updated.payment_status}, "
        f"current_start={updated.current_start}, current_end={updated.current_end}"
    )

    with transaction(db):
        db.add(SubscriptionEvent(
            event_type="payment.verified",
            user_id=user_id,
            subscription_id=subscription_pk,
            subscription_plan_id=plan_id,
            payment_id=razorpay_payment_id,
            event_metadata={
                "razorpay_subscription_id": razorpay_subscription_id,
                "razorpay_payment_id": razorpay_payment_id,
                "verification_method": "frontend_callback",
            },
        ))

    db.refresh(updated)
    return updated
