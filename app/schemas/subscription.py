"""
Pydantic schemas for subscription updates and the payment verification endpoint.
"""
from datetime import datetime
from typing import Optional, Union
from pydantic import BaseModel, Field

from app.db.models.user_subscription import PaymentStatus, SubscriptionStatus


class Increment(BaseModel):
    """Relative change applied to a counter column (negative to decrement)."""
    by: int = Field(1, description="Amount added to the stored counter")


Counter = Optional[Union[int, Increment]]


class SubscriptionUpdate(BaseModel):
    """
    Partial update of a user subscription's non-status columns.

    Only fields that were explicitly set are written, so an explicit None
    clears a column while an omitted field leaves it untouched.
    """
    payment_status: Optional[PaymentStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    current_start: Optional[datetime] = None
    current_end: Optional[datetime] = None
    next_charge_at: Optional[datetime] = None
    paid_count: Counter = None
    remaining_count: Counter = None
    total_count: Counter = None
    retry_attempts: Counter = None
    cancel_requested_at: Optional[datetime] = None
    cancel_at_cycle_end: Optional[bool] = None

    class Config:
        extra = "forbid"

    def is_empty(self) -> bool:
        return not self.model_fields_set


class VerifyPaymentRequest(BaseModel):
    """
    Request schema for verifying a Razorpay checkout callback.

    Fields are optional here so missing ones can be reported together.
    """
    razorpay_subscription_id: Optional[str] = Field(None, description="Razorpay subscription ID")
    razorpay_payment_id: Optional[str] = Field(None, description="Razorpay payment ID")
    razorpay_signature: Optional[str] = Field(None, description="HMAC signature from checkout")

    class Config:
        json_schema_extra = {
            "example": {
                "razorpay_subscription_id": "sub_00000000000001",
                "razorpay_payment_id": "pay_00000000000001",
                "razorpay_signature": "9ef4dffbfd84f1318f6739a3ce19f9d85851857ae648f114332d8401e0949a3d"
            }
        }


class SubscriptionSummary(BaseModel):
    id: int
    status: SubscriptionStatus
    payment_status: Optional[PaymentStatus] = None


class VerifyPaymentResponse(BaseModel):
    """Response schema for a verified payment."""
    status: str = Field("ok", description="Always 'ok' on success")
    message: str = Field(..., description="Human readable result")
    subscription: SubscriptionSummary


class SubscriptionErrorResponse(BaseModel):
    """Error response schema for subscription and webhook endpoints."""
    error: str = Field(..., description="Error message")
    error_type: str = Field(..., description="Machine readable classification")
    message: Optional[str] = Field(None, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Payment signature verification failed",
                "error_type": "SIGNATURE_VERIFICATION_FAILED",
                "message": "The payment signature could not be verified."
            }
        }
