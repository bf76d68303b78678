# backend/bookbeauty/models/booking.py
"""
Booking model for BookBeauty.

A booking snapshots everything slot computation and payment need (date,
wall-clock start, duration, buffers, capacity units, price) so later
changes to the service do not rewrite history. Bookings are never deleted;
they only move through statuses.
"""

from enum import Enum
import logging
from typing import Optional

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Waiting for the salon to accept
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED_BY_CUSTOMER = "cancelled_by_customer"
    PAID = "paid"
    FAILED = "failed"  # Payment failed; slot kept so the customer can retry
    CANCELLED = "cancelled"  # Cancelled with part of the amount retained
    REFUNDED = "refunded"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Statuses that still occupy capacity in the salon's calendar.
ACTIVE_BOOKING_STATUSES = frozenset(
    {
        BookingStatus.PENDING.value,
        BookingStatus.CONFIRMED.value,
        BookingStatus.PAID.value,
        BookingStatus.FAILED.value,
        BookingStatus.CHECKED_IN.value,
    }
)

# Statuses for which no new payment may be started.
PAYMENT_BLOCKING_STATUSES = frozenset(
    {
        BookingStatus.DECLINED.value,
        BookingStatus.CANCELLED_BY_CUSTOMER.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.REFUNDED.value,
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
    }
)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_company_date", "company_id", "booking_date"),
        Index("ix_bookings_company_status", "company_id", "status"),
    )

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    company_id = Column(String(128), ForeignKey("companies.id"), nullable=False)
    service_id = Column(String(26), ForeignKey("services.id"), nullable=False)
    customer_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)

    # Schedule snapshot
    booking_date = Column(Date, nullable=False)
    start_minutes = Column(Integer, nullable=False)
    start_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    buffer_before_minutes = Column(Integer, nullable=False, default=0)
    buffer_after_minutes = Column(Integer, nullable=False, default=0)
    capacity_units = Column(Integer, nullable=False, default=1)

    # Display snapshot
    company_name = Column(String(255), nullable=True)
    service_name = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_note = Column(Text, nullable=True)

    # Money (integer eurocents once payment starts)
    service_price = Column(Numeric(10, 2), nullable=True)
    amount_cents = Column(Integer, nullable=True)

    status = Column(String(30), nullable=False, default=BookingStatus.PENDING.value, index=True)
    payment_status = Column(String(30), nullable=False, default="")
    # Top-level payment id kept for bookings written before payment_detail existed.
    mollie_payment_id = Column(String(64), nullable=True, index=True)

    # Check-in
    check_in_code = Column(String(12), nullable=True)
    check_in_code_expires_at = Column(DateTime(timezone=True), nullable=True)
    check_in_last_code = Column(String(12), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(String(128), nullable=True)

    payment_detail = relationship(
        "BookingPayment",
        back_populates="booking",
        uselist=False,
        cascade="all, delete-orphan",
    )
    cancellation_detail = relationship(
        "BookingCancellation",
        back_populates="booking",
        uselist=False,
        cascade="all, delete-orphan",
    )
    company = relationship("Company")
    service = relationship("Service")

    @property
    def occupied_start_minutes(self) -> int:
        return int(self.start_minutes) - int(self.buffer_before_minutes or 0)

    @property
    def occupied_end_minutes(self) -> int:
        return (
            int(self.start_minutes)
            + int(self.duration_minutes)
            + int(self.buffer_after_minutes or 0)
        )

    @property
    def current_payment_id(self) -> Optional[str]:
        if self.payment_detail is not None and self.payment_detail.payment_id:
            return self.payment_detail.payment_id
        return self.mollie_payment_id or None

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} {self.booking_date} +{self.start_minutes}m "
            f"status={self.status} payment={self.payment_status or '-'}>"
        )
