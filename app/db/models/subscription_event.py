"""
SubscriptionEvent model: append-only business history of a subscription.
"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, JSON, ForeignKey, Index
from sqlalchemy.sql import func
from app.db.base import Base


class SubscriptionEvent(Base):
    __tablename__ = "subscription_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String, nullable=False, index=True)  # "payment.verified", "subscription.charged", ...
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("user_subscriptions.id"), nullable=True, index=True)
    subscription_plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=True)
    payment_id = Column(String, nullable=True)
    amount = Column(Numeric(10, 2), nullable=True)  # rupees, converted from paise
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_subscription_event_created', 'subscription_id', 'created_at'),
    )
