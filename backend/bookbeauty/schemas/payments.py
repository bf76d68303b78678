"""Payment, refund and webhook DTOs."""

from typing import Literal, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class CreatePaymentRequest(StrictRequestModel):
    booking_id: str = Field(..., min_length=1, max_length=64)
    amount_cents: Optional[int] = Field(
        None, ge=0, description="Only used when the booking has no stored price"
    )


class CreatePaymentResponse(StrictModel):
    booking_id: str
    payment_id: Optional[str] = None
    checkout_url: Optional[str] = None
    status: str
    mollie_status: str = ""
    amount_cents: int
    platform_fee_cents: int
    salon_net_cents: int
    reused: bool = False


class CancelRefundRequest(StrictRequestModel):
    booking_id: str = Field(..., min_length=1, max_length=64)
    cancel_type: Literal["normal", "late"] = "normal"
    cancel_reason: Optional[str] = Field(None, max_length=1000)
    requested_by: Optional[str] = Field(None, max_length=20)


class CancelRefundResponse(StrictModel):
    """Cancellation breakdown in integer eurocents."""

    booking_id: str
    already_refunded: bool = False
    mollie_refund_id: Optional[str] = None
    status: str
    payment_status: Optional[str] = None
    cancel_type: Optional[str] = None
    total_cents: Optional[int] = None
    hold_cents: Optional[int] = None
    platform_kept_cents: Optional[int] = None
    company_kept_cents: Optional[int] = None
    refunded_cents: Optional[int] = None
    settled_without_payment: bool = False


class SyncPaymentRequest(StrictRequestModel):
    booking_id: Optional[str] = Field(None, max_length=64)
    payment_id: Optional[str] = Field(None, max_length=64)


class SyncPaymentResponse(StrictModel):
    booking_id: Optional[str] = None
    payment_id: str
    booking_found: bool
    payment_status: str = ""
    mollie_status: str = ""
    previous_payment_status: str = ""
    changed: bool = False
    skipped: Optional[str] = None


class PaymentsHealthResponse(StrictModel):
    mode: str
    platform_key_configured: bool
    webhook_url_configured: bool
    app_base_url_configured: bool
    oauth_configured: bool
    token_encryption_enabled: bool


class WebhookResponse(StrictModel):
    """Webhook acknowledgement; always returned with HTTP 200."""

    received: bool = True
    payment_id: Optional[str] = None
    booking_id: Optional[str] = None
    booking_found: Optional[bool] = None
    changed: Optional[bool] = None
    payment_status: Optional[str] = None
    mollie_status: Optional[str] = None
    previous_payment_status: Optional[str] = None
    skipped: Optional[str] = None
    processing_error: Optional[str] = None
