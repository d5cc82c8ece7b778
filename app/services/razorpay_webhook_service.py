"""
Razorpay subscription webhook processing.

Each delivery is recorded in webhook_events (idempotency ledger and payload
snapshot) and dispatched to a handler that maps the event to a proposed
status plus the fields it carries. Every status change goes through
safe_update_subscription_status, so duplicate and out-of-order deliveries
cannot regress a subscription.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.db.models.subscription_event import SubscriptionEvent
from app.db.models.user_subscription import PaymentStatus, SubscriptionStatus, UserSubscription
from app.db.models.webhook_event import WebhookEvent
from app.db.session import transaction
from app.services.subscription_status import (
    RECOVERABLE_STATUSES,
    SubscriptionNotFoundError,
    get_safe_billing_cycle_update,
    safe_update_subscription_status,
)
from app.schemas.subscription import Increment, SubscriptionUpdate
from app.utils.date_utils import from_unix_timestamp, utc_now

logger = logging.getLogger(__name__)

COUNTER_FIELDS = ("paid_count", "remaining_count", "total_count")


class WebhookPayloadError(ValueError):
    """The webhook body is not a usable Razorpay event."""


def parse_webhook_payload(raw_body: bytes) -> Dict[str, Any]:
    """Decode a webhook body, rejecting anything that is not a JSON object."""
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Webhook JSON parse error: {e}, body_snippet={raw_body[:200]!r}")
        raise WebhookPayloadError(f"Invalid JSON payload: {e}")

    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")
    return payload


def is_event_processed(db: Session, webhook_id: str) -> bool:
    """True if this delivery id was already processed successfully."""
    existing = db.query(WebhookEvent).filter(WebhookEvent.webhook_id == webhook_id).first()
    return existing is not None and existing.status == "success"


def _start_delivery(db: Session, webhook_id: str, payload: Dict[str, Any]) -> Optional[WebhookEvent]:
    """
    Lock or create the ledger row for this delivery.

    Returns None when the row already records a success, e.g. a concurrent
    delivery of the same event committed after the early duplicate check.
    Redelivery of a failed event reuses its row.
    """
    delivery = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.webhook_id == webhook_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if delivery and delivery.status == "success":
        return None
    if not delivery:
        delivery = WebhookEvent(webhook_id=webhook_id)
        db.add(delivery)

    delivery.event_type = payload.get("event") or "unknown"
    delivery.payload = payload
    delivery.status = "processing"
    delivery.error = None
    delivery.processed_at = utc_now()
    db.flush()
    return delivery


def process_webhook(db: Session, webhook_id: str, payload: Dict[str, Any]) -> bool:
    """
    Record and process one delivery in a single transaction.

    The delivery row is written whether or not the event changes the
    subscription, so the event history stays complete.

    Returns:
        False if the event had already been processed, True otherwise
    """
    with transaction(db):
        delivery = _start_delivery(db, webhook_id, payload)
        if delivery is None:
            logger.info(f"Webhook already processed (detected under lock): {webhook_id}")
            return False
        process_webhook_event(db, payload)
        delivery.status = "success"
        delivery.error = None
    return True


def mark_webhook_failed(db: Session, webhook_id: str, payload: Dict[str, Any], error: str) -> bool:
    """
    Record a failed delivery in a fresh transaction.

    A row that already records a success is left alone: another delivery of
    the same event won, and replaying it would apply the event twice.

    Returns:
        False if the event had already been processed, True otherwise
    """
    with transaction(db):
        delivery = (
            db.query(WebhookEvent)
            .filter(WebhookEvent.webhook_id == webhook_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if delivery and delivery.status == "success":
            logger.warning(f"Not marking webhook failed, already processed: webhook_id={webhook_id}")
            return False
        if not delivery:
            delivery = WebhookEvent(webhook_id=webhook_id, event_type=payload.get("event") or "unknown")
            db.add(delivery)
        delivery.payload = payload
        delivery.status = "failed"
        delivery.error = error
        delivery.processed_at = utc_now()
    return True


def process_webhook_event(db: Session, payload: Dict[str, Any]) -> None:
    """Dispatch a webhook payload to its event handler."""
    event_type = payload.get("event")
    entities = payload.get("payload") or {}
    subscription_data = (entities.get("subscription") or {}).get("entity") or {}

    if not subscription_data.get("id"):
        raise WebhookPayloadError("Missing subscription data in webhook")

    logger.info(f"Processing webhook: {event_type} for subscription: {subscription_data['id']}")

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled webhook event: {event_type}")
        return

    payment_data = (entities.get("payment") or {}).get("entity")
    handler(db, subscription_data, payment_data)


def _get_subscription(db: Session, razorpay_subscription_id: str) -> UserSubscription:
    subscription = db.query(UserSubscription).filter(
        UserSubscription.razorpay_subscription_id == razorpay_subscription_id
    ).with_for_update().first()

    if not subscription:
        raise SubscriptionNotFoundError(f"Subscription not found: {razorpay_subscription_id}")
    return subscription


def _billing_cycle_fields(subscription: UserSubscription, subscription_data: Dict[str, Any]) -> Dict[str, Any]:
    safe_update = get_safe_billing_cycle_update(
        subscription.current_start,
        subscription.current_end,
        from_unix_timestamp(subscription_data.get("current_start")),
        from_unix_timestamp(subscription_data.get("current_end")),
    )
    return safe_update or {}


def _counter_fields(subscription_data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        name: subscription_data[name]
        for name in COUNTER_FIELDS
        if subscription_data.get(name) is not None
    }


def _next_charge_at(subscription_data: Dict[str, Any], require_remaining: bool = False):
    if require_remaining and not (subscription_data.get("remaining_count") or 0) > 0:
        return None
    return from_unix_timestamp(subscription_data.get("charge_at"))


def _unless_completed(subscription: UserSubscription, payment_status: PaymentStatus) -> Dict[str, Any]:
    # A confirmed payment is never downgraded by a lifecycle event
    if subscription.payment_status == PaymentStatus.COMPLETED:
        return {}
    return {"payment_status": payment_status}


def _record_event(
    db: Session,
    subscription: UserSubscription,
    event_type: str,
    metadata: Dict[str, Any],
    payment_id: Optional[str] = None,
    amount: Optional[Decimal] = None,
) -> None:
    db.add(SubscriptionEvent(
        event_type=event_type,
        user_id=subscription.user_id,
        subscription_id=subscription.id,
        subscription_plan_id=subscription.plan_id,
        payment_id=payment_id,
        amount=amount,
        event_metadata=metadata,
    ))


def handle_subscription_charged(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    """Successful charge: ACTIVE, payment completed, counters and cycle refreshed."""
    subscription = _get_subscription(db, subscription_data["id"])
    is_recovery = subscription.status in RECOVERABLE_STATUSES

    logger.debug(
        f"Subscription charged: razorpay_subscription_id={subscription_data['id']}, "
        f"current_status={subscription.status.value}, paid_count={subscription_data.get('paid_count')}, "
        f"remaining_count={subscription_data.get('remaining_count')}, charge_at={subscription_data.get('charge_at')}"
    )

    fields = {
        "payment_status": PaymentStatus.COMPLETED,
        "next_charge_at": _next_charge_at(subscription_data, require_remaining=True),
        "retry_attempts": 0,
        **_counter_fields(subscription_data),
        **_billing_cycle_fields(subscription, subscription_data),
    }
    safe_update_subscription_status(db, subscription.id, SubscriptionStatus.ACTIVE, SubscriptionUpdate(**fields))

    payment_id = (payment_data or {}).get("id")
    raw_amount = (payment_data or {}).get("amount")
    amount = Decimal(raw_amount) / 100 if raw_amount else None  # paise to rupees

    _record_event(
        db,
        subscription,
        "subscription.charged",
        {
            "razorpay_subscription_id": subscription_data["id"],
            "razorpay_payment_id": payment_id,
            "charge_cycle": subscription_data.get("paid_count"),
            "recovery": is_recovery,
        },
        payment_id=payment_id,
        amount=amount,
    )

    logger.info(
        f"Payment charged for subscription: {subscription_data['id']}, amount={raw_amount}"
        f"{' (RECOVERY)' if is_recovery else ''}"
    )


def handle_subscription_activated(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    subscription = _get_subscription(db, subscription_data["id"])
    is_recovery = subscription.status in RECOVERABLE_STATUSES

    fields = {
        "next_charge_at": _next_charge_at(subscription_data, require_remaining=True),
        **_billing_cycle_fields(subscription, subscription_data),
        **_unless_completed(subscription, PaymentStatus.PENDING),
    }
    if is_recovery:
        fields["retry_attempts"] = 0

    safe_update_subscription_status(db, subscription.id, SubscriptionStatus.ACTIVE, SubscriptionUpdate(**fields))
    logger.info(f"Subscription activated: {subscription_data['id']}{' (RECOVERY)' if is_recovery else ''}")


def handle_subscription_authenticated(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    subscription = _get_subscription(db, subscription_data["id"])
    already_paid = subscription.payment_status == PaymentStatus.COMPLETED

    safe_update_subscription_status(
        db,
        subscription.id,
        SubscriptionStatus.AUTHENTICATED,
        SubscriptionUpdate(**_unless_completed(subscription, PaymentStatus.PENDING)),
    )
    logger.info(
        f"Subscription authenticated: {subscription_data['id']}"
        f"{' (payment already completed)' if already_paid else ''}"
    )


def handle_subscription_pending(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    """Charge failed, Razorpay is retrying."""
    subscription = _get_subscription(db, subscription_data["id"])

    fields = {
        "retry_attempts": Increment(by=1),
        "next_charge_at": _next_charge_at(subscription_data),
        **_counter_fields(subscription_data),
        **_billing_cycle_fields(subscription, subscription_data),
        **_unless_completed(subscription, PaymentStatus.FAILED),
    }
    safe_update_subscription_status(db, subscription.id, SubscriptionStatus.PENDING, SubscriptionUpdate(**fields))
    logger.info(f"Subscription pending: {subscription_data['id']}, retry attempt: {subscription.retry_attempts}")


def handle_subscription_halted(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    """Retries exhausted. next_charge_at is kept for when the customer fixes payment."""
    subscription = _get_subscription(db, subscription_data["id"])

    fields = {
        "next_charge_at": _next_charge_at(subscription_data),
        **_counter_fields(subscription_data),
        **_billing_cycle_fields(subscription, subscription_data),
        **_unless_completed(subscription, PaymentStatus.FAILED),
    }
    safe_update_subscription_status(db, subscription.id, SubscriptionStatus.HALTED, SubscriptionUpdate(**fields))
    logger.warning(f"Subscription halted: {subscription_data['id']}, retry attempts: {subscription.retry_attempts}")


def handle_subscription_cancelled(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    subscription = _get_subscription(db, subscription_data["id"])
    was_user_cancelled = subscription.cancel_requested_at is not None

    # ended_at: immediate cancellation; current_end: cancel at cycle end
    end_date = (
        from_unix_timestamp(subscription_data.get("ended_at"))
        or from_unix_timestamp(subscription_data.get("current_end"))
        or utc_now()
    )

    safe_update_subscription_status(
        db,
        subscription.id,
        SubscriptionStatus.CANCELLED,
        SubscriptionUpdate(end_date=end_date, cancel_requested_at=None, cancel_at_cycle_end=None),
    )

    _record_event(
        db,
        subscription,
        "subscription.cancelled",
        {
            "razorpay_subscription_id": subscription_data["id"],
            "user_requested": was_user_cancelled,
            "ended_at": end_date.isoformat(),
            "cancellation_reason": "user_requested" if was_user_cancelled else "system_cancelled",
            "cancellation_type": "immediate" if subscription_data.get("ended_at") else "cycle_end",
        },
    )

    logger.info(
        f"Subscription cancelled: {subscription_data['id']} "
        f"({'USER REQUESTED' if was_user_cancelled else 'SYSTEM'}), end_date={end_date.isoformat()}"
    )


def handle_subscription_completed(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    subscription = _get_subscription(db, subscription_data["id"])
    safe_update_subscription_status(db, subscription.id, SubscriptionStatus.COMPLETED)
    logger.info(f"Subscription completed: {subscription_data['id']}")


def handle_subscription_paused(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    subscription = _get_subscription(db, subscription_data["id"])
    safe_update_subscription_status(db, subscription.id, SubscriptionStatus.PAUSED)
    logger.info(f"Subscription paused: {subscription_data['id']}")


def handle_subscription_updated(db: Session, subscription_data: Dict, payment_data: Optional[Dict]) -> None:
    """
    Plan change: resets the subscription duration and current cycle from the payload.

    The billing-cycle guard is not applied here because a plan change may
    legitimately restart the cycle.
    """
    subscription = _get_subscription(db, subscription_data["id"])

    new_start_date = from_unix_timestamp(subscription_data.get("start_at"))
    new_end_date = from_unix_timestamp(subscription_data.get("end_at"))

    fields = {
        "start_date": new_start_date,
        "end_date": new_end_date,
        "current_start": from_unix_timestamp(subscription_data.get("current_start")),
        "current_end": from_unix_timestamp(subscription_data.get("current_end")),
        "next_charge_at": _next_charge_at(subscription_data),
        **_counter_fields(subscription_data),
    }
    safe_update_subscription_status(db, subscription.id, SubscriptionStatus.ACTIVE, SubscriptionUpdate(**fields))

    _record_event(
        db,
        subscription,
        "subscription.updated",
        {
            "razorpay_subscription_id": subscription_data["id"],
            "updated_at": utc_now().isoformat(),
            "duration_reset": True,
            "new_start_date": new_start_date.isoformat() if new_start_date else None,
            "new_end_date": new_end_date.isoformat() if new_end_date else None,
        },
    )

    logger.info(f"Subscription updated: {subscription_data['id']}")


EventHandler = Callable[[Session, Dict, Optional[Dict]], None]

EVENT_HANDLERS: Dict[str, EventHandler] = {
    "subscription.charged": handle_subscription_charged,
    "subscription.activated": handle_subscription_activated,
    "subscription.authenticated": handle_subscription_authenticated,
    "subscription.pending": handle_subscription_pending,
    "subscription.halted": handle_subscription_halted,
    "subscription.cancelled": handle_subscription_cancelled,
    "subscription.completed": handle_subscription_completed,
    "subscription.paused": handle_subscription_paused,
    "subscription.updated": handle_subscription_updated,
}


def replay_failed_webhooks(db: Session, limit: int = 100) -> Dict[str, int]:
    """
    Reprocess deliveries recorded as failed, oldest first.

    Each delivery runs in its own transaction; one that fails again is
    re-marked as failed and the replay moves on.
    """
    failed = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.status == "failed")
        .order_by(WebhookEvent.created_at, WebhookEvent.id)
        .limit(limit)
        .all()
    )
    deliveries = [(event.webhook_id, event.payload or {}) for event in failed]

    results = {"succeeded": 0, "skipped": 0, "failed": 0}
    for webhook_id, payload in deliveries:
        try:
            if not process_webhook(db, webhook_id, payload):
                results["skipped"] += 1
                continue
            results["succeeded"] += 1
            logger.info(f"Replayed webhook: webhook_id={webhook_id}, event={payload.get('event')}")
        except Exception as e:
            logger.exception(f"Replay failed: webhook_id={webhook_id}")
            mark_webhook_failed(db, webhook_id, payload, str(e))
            results["failed"] += 1

    return results
