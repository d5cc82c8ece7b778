"""
WebhookEvent model: one row per Razorpay webhook delivery, keyed by event id.

Used both as the idempotency ledger and as the raw payload audit trail.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.sql import func
from app.db.base import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(String, unique=True, nullable=False, index=True)  # X-Razorpay-Event-Id
    event_type = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=True)
    status = Column(String, default="processing", nullable=False)  # processing | success | failed
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<WebhookEvent(webhook_id='{self.webhook_id}', event_type='{self.event_type}', status='{self.status}')>"
