"""Slot and booking DTOs."""

from datetime import date
from typing import List, Literal, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class SlotResponse(StrictModel):
    key: str
    label: str
    booking_date: date
    start_minutes: int
    end_minutes: int
    start_at_ms: int
    remaining_capacity: int
    total_capacity: int
    available: bool


class SlotListResponse(StrictModel):
    company_id: str
    service_id: str
    booking_date: date
    slots: List[SlotResponse]


class BookingCreateRequest(StrictRequestModel):
    company_id: str = Field(..., min_length=1, max_length=128)
    service_id: str = Field(..., min_length=1, max_length=64)
    booking_date: date
    start_minutes: int = Field(..., ge=0, lt=24 * 60)
    capacity_units: int = Field(1, ge=1, le=50)
    note: Optional[str] = Field(None, max_length=2000)
    customer_name: Optional[str] = Field(None, max_length=255)


class BookingStatusRequest(StrictRequestModel):
    status: Literal["confirmed", "declined"]


class BookingResponse(StrictModel):
    id: str
    company_id: str
    service_id: str
    customer_id: str
    booking_date: date
    start_minutes: int
    start_at_ms: int
    duration_minutes: int
    buffer_before_minutes: int
    buffer_after_minutes: int
    capacity_units: int
    company_name: Optional[str] = None
    service_name: Optional[str] = None
    customer_name: Optional[str] = None
    status: str
    payment_status: str = ""
    amount_cents: Optional[int] = None


class CheckInCodeResponse(StrictModel):
    booking_id: str
    code: str
    expires_at_ms: int


class CheckInRequest(StrictRequestModel):
    code: Optional[str] = Field(None, max_length=12)
    mode: Literal["preview", "confirm"] = "preview"


class CheckInResponse(StrictModel):
    booking_id: str
    company_id: str
    company_name: Optional[str] = None
    service_name: Optional[str] = None
    customer_name: Optional[str] = None
    booking_date: str
    start_minutes: int
    start_at_ms: int
    status: str
    payment_status: str = ""
    checked_in: bool
    already_checked_in: Optional[bool] = None
