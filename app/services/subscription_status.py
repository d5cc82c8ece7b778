"""
Subscription status precedence management.

Razorpay does not guarantee webhook ordering: deliveries are retried,
duplicated and reordered. Status changes are therefore gated on a precedence
rank, so a late "authenticated" event can never overwrite an "active"
subscription, with a short whitelist of legitimate downgrades (payment
failure, pause) and recovery paths back to ACTIVE.

Recovery rules:
- PENDING can recover to ACTIVE (retry succeeded). PENDING already ranks
  below ACTIVE, so this rule is redundant with the rank comparison; it is
  kept explicit alongside HALTED.
- HALTED can recover to ACTIVE (customer fixed the payment method). HALTED
  ranks above ACTIVE, so only this rule allows it.
"""
import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Mapping, NamedTuple, Optional, Tuple, Union

from sqlalchemy.orm import Session

from app.db.models.user_subscription import SubscriptionStatus, UserSubscription
from app.schemas.subscription import Increment, SubscriptionUpdate

logger = logging.getLogger(__name__)

StatusLike = Union[SubscriptionStatus, str]


class SubscriptionNotFoundError(ValueError):
    """Raised when a subscription row does not exist."""


class AllowedDowngrade(NamedTuple):
    from_status: SubscriptionStatus
    to_status: SubscriptionStatus
    reason: str


# Higher numbers take priority
STATUS_PRECEDENCE: Mapping[SubscriptionStatus, int] = MappingProxyType({
    SubscriptionStatus.CREATED: 0,
    SubscriptionStatus.PENDING: 0,  # retry sub-state of CREATED
    SubscriptionStatus.AUTHENTICATED: 1,
    SubscriptionStatus.ACTIVE: 2,
    SubscriptionStatus.PAUSED: 3,
    SubscriptionStatus.HALTED: 3,
    SubscriptionStatus.COMPLETED: 4,  # final states
    SubscriptionStatus.EXPIRED: 4,
    SubscriptionStatus.CANCELLED: 4,
})

_unranked = set(SubscriptionStatus) - set(STATUS_PRECEDENCE)
if _unranked:
    raise RuntimeError(f"Subscription statuses without a precedence rank: {sorted(_unranked)}")

ALLOWED_DOWNGRADES: Tuple[AllowedDowngrade, ...] = (
    AllowedDowngrade(
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PENDING,
        "Payment failure - entering retry cycle",
    ),
    AllowedDowngrade(
        SubscriptionStatus.PENDING,
        SubscriptionStatus.HALTED,
        "Multiple payment failures - subscription halted",
    ),
    AllowedDowngrade(
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAUSED,
        "User or system paused subscription",
    ),
)

RECOVERABLE_STATUSES = frozenset({SubscriptionStatus.PENDING, SubscriptionStatus.HALTED})


def _coerce_status(status: StatusLike) -> SubscriptionStatus:
    # ValueError on anything outside the enum
    return SubscriptionStatus(status)


def get_status_precedence(status: StatusLike) -> int:
    """Get the precedence rank of a status. Unknown statuses raise ValueError."""
    return STATUS_PRECEDENCE[_coerce_status(status)]


def get_allowed_downgrade(current_status: StatusLike, new_status: StatusLike) -> Optional[AllowedDowngrade]:
    """Return the whitelist entry for this transition, or None."""
    current_status = _coerce_status(current_status)
    new_status = _coerce_status(new_status)
    for downgrade in ALLOWED_DOWNGRADES:
        if downgrade.from_status == current_status and downgrade.to_status == new_status:
            return downgrade
    return None


def _is_recovery(current_status: SubscriptionStatus, new_status: SubscriptionStatus) -> bool:
    return current_status in RECOVERABLE_STATUSES and new_status == SubscriptionStatus.ACTIVE


def is_status_upgrade(current_status: StatusLike, new_status: StatusLike) -> bool:
    """
    Check if a status transition is allowed.

    First match wins: an explicitly allowed downgrade, then a recovery to
    ACTIVE, then a strict increase in precedence.
    """
    current_status = _coerce_status(current_status)
    new_status = _coerce_status(new_status)

    if get_allowed_downgrade(current_status, new_status):
        return True

    if _is_recovery(current_status, new_status):
        return True

    return STATUS_PRECEDENCE[new_status] > STATUS_PRECEDENCE[current_status]


def get_safe_status_update(current_status: StatusLike, new_status: StatusLike) -> SubscriptionStatus:
    """Return the status that should be stored: new if allowed, otherwise current."""
    if is_status_upgrade(current_status, new_status):
        return _coerce_status(new_status)
    return _coerce_status(current_status)


def describe_status_transition(current_status: StatusLike, new_status: StatusLike, allowed: bool) -> str:
    """Human readable reason for a transition decision."""
    current_status = _coerce_status(current_status)
    new_status = _coerce_status(new_status)

    if not allowed:
        return "downgrade/same - ignored"

    downgrade = get_allowed_downgrade(current_status, new_status)
    if downgrade:
        return f"allowed downgrade: {downgrade.reason}"
    if _is_recovery(current_status, new_status):
        return "recovery to ACTIVE"
    if STATUS_PRECEDENCE[new_status] > STATUS_PRECEDENCE[current_status]:
        return "upgrade"
    return "same status allowed"


def log_status_transition(
    subscription_ref: str,
    current_status: StatusLike,
    new_status: StatusLike,
    allowed: bool,
) -> Dict[str, object]:
    """
    Log a status transition attempt and return the logged fields.

    The fields are attached to the record as ``status_transition``.
    """
    current_status = _coerce_status(current_status)
    new_status = _coerce_status(new_status)
    transition = {
        "subscription": subscription_ref,
        "from": current_status.value,
        "from_rank": STATUS_PRECEDENCE[current_status],
        "to": new_status.value,
        "to_rank": STATUS_PRECEDENCE[new_status],
        "allowed": allowed,
        "reason": describe_status_transition(current_status, new_status, allowed),
    }
    logger.info(
        f"Status transition for {subscription_ref}: "
        f"from={transition['from']} (rank {transition['from_rank']}), "
        f"to={transition['to']} (rank {transition['to_rank']}), "
        f"allowed={allowed}, reason={transition['reason']}",
        extra={"status_transition": transition},
    )
    return transition


def _apply_fields(subscription: UserSubscription, fields: SubscriptionUpdate) -> None:
    for name in sorted(fields.model_fields_set):
        value = getattr(fields, name)
        if isinstance(value, Increment):
            current = getattr(subscription, name)
            # NULL counters stay NULL, as they would in SQL
            value = None if current is None else current + value.by
        setattr(subscription, name, value)


def safe_update_subscription_status(
    db: Session,
    subscription_id: int,
    new_status: StatusLike,
    fields: Optional[Union[SubscriptionUpdate, dict]] = None,
) -> Optional[UserSubscription]:
    """
    Update a subscription's status only if the transition is allowed.

    Must run inside the caller's transaction; changes are flushed, not
    committed. The row is read with SELECT ... FOR UPDATE so concurrent
    deliveries for the same subscription are decided one after another.

    Args:
        db: Database session holding the open transaction
        subscription_id: Primary key of the user subscription
        new_status: Proposed status
        fields: Additional columns to persist whether or not the status moves

    Returns:
        The updated subscription, or None if nothing was written

    Raises:
        SubscriptionNotFoundError: If no row matches subscription_id
    """
    new_status = _coerce_status(new_status)
    if fields is None:
        fields = SubscriptionUpdate()
    elif isinstance(fields, dict):
        fields = SubscriptionUpdate(**fields)

    subscription = (
        db.query(UserSubscription)
        .filter(UserSubscription.id == subscription_id)
        .with_for_update()
        .populate_existing()
        .first()
    )

    if not subscription:
        raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")

    current_status = _coerce_status(subscription.status)
    can_upgrade = is_status_upgrade(current_status, new_status)

    log_status_transition(
        subscription.razorpay_subscription_id or str(subscription.id),
        current_status,
        new_status,
        can_upgrade,
    )

    if can_upgrade:
        subscription.status = new_status
        _apply_fields(subscription, fields)
        db.flush()
        logger.info(
            f"Subscription {subscription_id} status updated: {current_status.value} -> {new_status.value}"
        )
        return subscription

    if not fields.is_empty():
        _apply_fields(subscription, fields)
        db.flush()
        logger.info(
            f"Subscription {subscription_id} status unchanged ({current_status.value}), "
            f"updating fields: {sorted(fields.model_fields_set)}"
        )
        return subscription

    logger.info(
        f"Subscription {subscription_id} status update skipped: "
        f"keeping {current_status.value}, no additional fields"
    )
    return None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_safe_billing_cycle_update(
    current_start: Optional[datetime],
    current_end: Optional[datetime],
    new_start: Optional[datetime],
    new_end: Optional[datetime],
) -> Optional[Dict[str, Optional[datetime]]]:
    """
    Billing cycle dates to write, or None to keep the stored cycle.

    A cycle is adopted when nothing is stored yet or when it starts strictly
    after the stored one; same or older cycles are discarded.
    """
    if not current_start or not current_end:
        return {"current_start": new_start, "current_end": new_end}

    if not new_start or not new_end:
        return None

    if _as_utc(new_start) > _as_utc(current_start):
        return {"current_start": new_start, "current_end": new_end}

    logger.info(
        f"Billing cycle regression prevented: current ({current_start.isoformat()} - {current_end.isoformat()}) "
        f"vs new ({new_start.isoformat()} - {new_end.isoformat()})"
    )
    return None
