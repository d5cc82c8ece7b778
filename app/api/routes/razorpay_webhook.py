"""
Razorpay subscription webhook endpoint.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.razorpay_service import verify_webhook_signature
from app.services.razorpay_webhook_service import (
    WebhookPayloadError,
    is_event_processed,
    mark_webhook_failed,
    parse_webhook_payload,
    process_webhook,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Razorpay Webhook"])

ALREADY_PROCESSED = {"success": True, "message": "Already processed"}


def _record_failure(db: Session, webhook_id: str, payload: dict, error: str) -> bool:
    """Record the failure; False when a concurrent delivery already succeeded."""
    try:
        return mark_webhook_failed(db, webhook_id, payload, error)
    except SQLAlchemyError as update_error:
        logger.error(f"Failed to update webhook status: {update_error}")
        return True


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    x_razorpay_event_id: Optional[str] = Header(None),
    x_razorpay_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """
    Handle Razorpay subscription lifecycle events.

    Deliveries are verified against the raw body, deduplicated by event id
    and processed in one transaction. Database work runs in the threadpool.
    """
    raw_body = await request.body()

    try:
        payload = parse_webhook_payload(raw_body)
    except WebhookPayloadError:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid JSON payload", "error_type": "INVALID_PAYLOAD"},
        )

    if not x_razorpay_event_id:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing webhook ID"})

    if not x_razorpay_signature:
        logger.error("Webhook signature verification failed: signature missing")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})

    try:
        signature_valid = verify_webhook_signature(raw_body, x_razorpay_signature)
    except ValueError as e:
        logger.error(f"Webhook signature verification unavailable: {e}")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})

    if not signature_valid:
        logger.error(f"Invalid webhook signature: webhook_id={x_razorpay_event_id}")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid signature"})

    if await run_in_threadpool(is_event_processed, db, x_razorpay_event_id):
        logger.info(f"Webhook already processed: {x_razorpay_event_id}")
        return ALREADY_PROCESSED

    try:
        processed = await run_in_threadpool(process_webhook, db, x_razorpay_event_id, payload)
    except Exception as e:
        logger.exception(f"Error processing webhook: webhook_id={x_razorpay_event_id}, event={payload.get('event')}")
        recorded = await run_in_threadpool(_record_failure, db, x_razorpay_event_id, payload, str(e))
        if not recorded:
            return ALREADY_PROCESSED
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to process webhook"},
        )

    if not processed:
        return ALREADY_PROCESSED
    return {"success": True}
