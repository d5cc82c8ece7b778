"""
Health check endpoint for deployment monitoring.
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import config
from app.db.models.webhook_event import WebhookEvent
from app.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_check(db: Session = Depends(get_db)):
    """
    Report database connectivity, Razorpay configuration and the number of
    webhook deliveries waiting for replay.

    Always 200; a failing check shows up as status "degraded".
    """
    status = "healthy"
    failed_webhooks = None

    try:
        db.execute(text("SELECT 1"))
        failed_webhooks = db.query(WebhookEvent).filter(WebhookEvent.status == "failed").count()
        db_status = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        db_status = "unavailable"
        status = "degraded"

    razorpay_configured = bool(config.RAZORPAY_KEY_SECRET and config.RAZORPAY_WEBHOOK_SECRET)
    if not razorpay_configured:
        status = "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": db_status,
        "razorpay_configured": razorpay_configured,
        "failed_webhooks": failed_webhooks,
    }
