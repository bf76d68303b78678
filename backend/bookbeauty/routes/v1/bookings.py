# backend/bookbeauty/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1.
All business logic delegated to BookingService.

Endpoints:
    GET /companies/{company_id}/slots       - Bookable slots for a service on a date
    POST /bookings                          - Create a booking
    POST /bookings/{booking_id}/status      - Salon accepts or declines
    POST /bookings/{booking_id}/cancel      - Customer cancels an unpaid booking
    POST /bookings/{booking_id}/check-in-code - Salon issues a check-in code
    POST /bookings/{booking_id}/check-in    - Preview or confirm check-in
"""

import asyncio
from datetime import date
import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from ...api.dependencies import get_booking_service, get_current_active_user
from ...core.exceptions import DomainException
from ...core.timezone_utils import to_epoch_ms
from ...models.booking import Booking
from ...models.user import User
from ...schemas.bookings import (
    BookingCreateRequest,
    BookingResponse,
    BookingStatusRequest,
    CheckInCodeResponse,
    CheckInRequest,
    CheckInResponse,
    SlotListResponse,
    SlotResponse,
)
from ...services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        company_id=booking.company_id,
        service_id=booking.service_id,
        customer_id=booking.customer_id,
        booking_date=booking.booking_date,
        start_minutes=booking.start_minutes,
        start_at_ms=to_epoch_ms(booking.start_at),
        duration_minutes=booking.duration_minutes,
        buffer_before_minutes=booking.buffer_before_minutes or 0,
        buffer_after_minutes=booking.buffer_after_minutes or 0,
        capacity_units=booking.capacity_units or 1,
        company_name=booking.company_name,
        service_name=booking.service_name,
        customer_name=booking.customer_name,
        status=booking.status,
        payment_status=booking.payment_status or "",
        amount_cents=booking.amount_cents,
    )


@router.get("/companies/{company_id}/slots", response_model=SlotListResponse)
async def list_slots(
    company_id: str = Path(..., min_length=1, max_length=128),
    service_id: str = Query(..., alias="serviceId", min_length=1, max_length=64),
    booking_date: date = Query(..., alias="date"),
    capacity_units: int = Query(1, alias="capacityUnits", ge=1, le=50),
    include_unavailable: bool = Query(False, alias="includeUnavailable"),
    booking_service: BookingService = Depends(get_booking_service),
) -> SlotListResponse:
    """Public slot listing; full slots are only included on request."""
    try:
        slots = await asyncio.to_thread(
            booking_service.list_slots,
            company_id,
            service_id,
            booking_date,
            capacity_units=capacity_units,
            include_unavailable=include_unavailable,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return SlotListResponse(
        company_id=company_id,
        service_id=service_id,
        booking_date=booking_date,
        slots=[
            SlotResponse(
                key=slot.key,
                label=slot.label,
                booking_date=slot.booking_date,
                start_minutes=slot.start_minutes,
                end_minutes=slot.end_minutes,
                start_at_ms=slot.start_at_ms,
                remaining_capacity=slot.remaining_capacity,
                total_capacity=slot.total_capacity,
                available=slot.available,
            )
            for slot in slots
        ],
    )


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreateRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.create_booking,
            current_user,
            payload.company_id,
            payload.service_id,
            payload.booking_date,
            payload.start_minutes,
            note=payload.note,
            customer_name=payload.customer_name,
            capacity_units=payload.capacity_units,
        )
        return _booking_response(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/status", response_model=BookingResponse)
async def set_booking_status(
    booking_id: str = Path(..., min_length=1, max_length=64),
    payload: BookingStatusRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.set_status_by_company, current_user, booking_id, payload.status
        )
        return _booking_response(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str = Path(..., min_length=1, max_length=64),
    current_user: User = Depends(get_current_active_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_by_customer, current_user, booking_id
        )
        return _booking_response(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/check-in-code", response_model=CheckInCodeResponse)
async def issue_check_in_code(
    booking_id: str = Path(..., min_length=1, max_length=64),
    current_user: User = Depends(get_current_active_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> CheckInCodeResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.issue_check_in_code, current_user, booking_id
        )
        return CheckInCodeResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/check-in", response_model=CheckInResponse)
async def check_in(
    booking_id: str = Path(..., min_length=1, max_length=64),
    payload: CheckInRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> CheckInResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.check_in, current_user, booking_id, payload.code, payload.mode
        )
        return CheckInResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)
