# backend/bookbeauty/routes/v1/payments.py
"""
Payment API Routes - API v1

Versioned payment endpoints under /api/v1/payments.
All business logic delegated to PaymentService.

Endpoints:
    POST /create          → Create (or reuse) the Mollie payment for a booking
    POST /cancel-refund   → Cancel a booking and refund per the salon policy
    GET|POST /sync        → Reconcile a payment with Mollie on demand
    GET /health           → Which provider settings are configured
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from ...api.dependencies import get_current_active_user, get_payment_service
from ...core.exceptions import DomainException
from ...models.user import User
from ...schemas.payments import (
    CancelRefundRequest,
    CancelRefundResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
    PaymentsHealthResponse,
    SyncPaymentRequest,
    SyncPaymentResponse,
)
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("/create", response_model=CreatePaymentResponse)
async def create_payment(
    payload: CreatePaymentRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> CreatePaymentResponse:
    """Start checkout for a booking; an open payment is returned with ``reused=true``."""
    try:
        result = await asyncio.to_thread(
            payment_service.create_payment,
            current_user,
            payload.booking_id,
            payload.amount_cents,
        )
        return CreatePaymentResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/cancel-refund", response_model=CancelRefundResponse)
async def cancel_refund(
    payload: CancelRefundRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> CancelRefundResponse:
    try:
        result = await asyncio.to_thread(
            payment_service.cancel_and_refund,
            current_user,
            payload.booking_id,
            payload.cancel_type,
            payload.cancel_reason,
            payload.requested_by,
        )
        return CancelRefundResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


async def _sync(
    payment_service: PaymentService,
    booking_id: Optional[str],
    payment_id: Optional[str],
) -> SyncPaymentResponse:
    try:
        result = await asyncio.to_thread(
            payment_service.sync_payment, booking_id=booking_id, payment_id=payment_id
        )
        return SyncPaymentResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/sync", response_model=SyncPaymentResponse)
async def sync_payment_get(
    booking_id: Optional[str] = Query(None, alias="bookingId", max_length=64),
    payment_id: Optional[str] = Query(None, alias="paymentId", max_length=64),
    payment_service: PaymentService = Depends(get_payment_service),
) -> SyncPaymentResponse:
    return await _sync(payment_service, booking_id, payment_id)


@router.post("/sync", response_model=SyncPaymentResponse)
async def sync_payment_post(
    payload: SyncPaymentRequest = Body(...),
    payment_service: PaymentService = Depends(get_payment_service),
) -> SyncPaymentResponse:
    """Body-based sync; safe to call repeatedly."""
    return await _sync(payment_service, payload.booking_id, payload.payment_id)


@router.get("/health", response_model=PaymentsHealthResponse)
async def payments_health(
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentsHealthResponse:
    return PaymentsHealthResponse(**payment_service.payments_health())
