"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from app.db.models.user import User
from app.db.models.subscription_plan import SubscriptionPlan, SubscriptionCategory
from app.db.models.user_subscription import UserSubscription, SubscriptionStatus, PaymentStatus
from app.db.models.subscription_event import SubscriptionEvent
from app.db.models.webhook_event import WebhookEvent

# Explicitly export all models for clarity
__all__ = [
    "User",
    "SubscriptionPlan",
    "SubscriptionCategory",
    "UserSubscription",
    "SubscriptionStatus",
    "PaymentStatus",
    "SubscriptionEvent",
    "WebhookEvent",
]
