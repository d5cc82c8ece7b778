"""
SubscriptionPlan model for the coaching plans users subscribe to.
"""
import enum
from sqlalchemy import Column, Integer, String, Numeric, JSON, Enum
from app.db.base import Base


class SubscriptionCategory(str, enum.Enum):
    """Coaching categories a trainer can offer plans in."""
    FITNESS = "fitness"
    PSYCHOLOGY = "psychology"
    MANIFESTATION = "manifestation"


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category = Column(Enum(SubscriptionCategory, native_enum=False, length=20), nullable=False)
    plan_type = Column(String, nullable=True)  # online | in-person | self-paced
    price = Column(Numeric(10, 2), nullable=False)
    billing_cycle = Column(Integer, default=1, nullable=False)  # months per charge
    billing_period = Column(String, default="monthly", nullable=False)
    features = Column(JSON, nullable=True)
    razorpay_plan_id = Column(String, nullable=True, unique=True)

    def __repr__(self):
        return f"<SubscriptionPlan(id={self.id}, name='{self.name}', billing_cycle={self.billing_cycle})>"
