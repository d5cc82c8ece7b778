"""
UserSubscription model: one user's subscription to a coaching plan.

The status column is written only through
app.services.subscription_status.safe_update_subscription_status.
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base import Base


class SubscriptionStatus(str, enum.Enum):
    """Razorpay subscription lifecycle stages."""
    CREATED = "CREATED"
    PENDING = "PENDING"
    AUTHENTICATED = "AUTHENTICATED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    HALTED = "HALTED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    """Status of the most recent payment for a subscription."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False, index=True)

    razorpay_subscription_id = Column(String, nullable=True, unique=True, index=True)

    status = Column(
        Enum(SubscriptionStatus, native_enum=False, length=20),
        default=SubscriptionStatus.CREATED,
        nullable=False,
    )
    payment_status = Column(
        Enum(PaymentStatus, native_enum=False, length=20),
        default=PaymentStatus.PENDING,
        nullable=True,
    )

    # Full subscription duration
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    # Current billing cycle
    current_start = Column(DateTime(timezone=True), nullable=True)
    current_end = Column(DateTime(timezone=True), nullable=True)
    next_charge_at = Column(DateTime(timezone=True), nullable=True)

    # Counters mirrored from Razorpay
    paid_count = Column(Integer, default=0, nullable=False)
    remaining_count = Column(Integer, nullable=True)
    total_count = Column(Integer, nullable=True)
    retry_attempts = Column(Integer, default=0, nullable=False)

    # Cancellation requests made from the settings page
    cancel_requested_at = Column(DateTime(timezone=True), nullable=True)
    cancel_at_cycle_end = Column(Boolean, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")

    __table_args__ = (
        Index('idx_user_subscription_status', 'user_id', 'status'),
    )

    def __repr__(self):
        return f"<UserSubscription(id={self.id}, user_id={self.user_id}, status='{self.status}')>"
