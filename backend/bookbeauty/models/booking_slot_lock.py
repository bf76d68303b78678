"""Per-seat slot lock rows that serialize booking creation."""

from __future__ import annotations

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func

from ..database import Base


def slot_lock_key(company_id: str, booking_date: str, seat: int, minute: int) -> str:
    return f"{company_id}_{booking_date}_{seat}_{minute}"


class BookingSlotLock(Base):
    """
    One row per (company, date, seat, minute) held by a booking.

    The primary key is the composed lock key, so two transactions racing for
    the same seat and minute cannot both insert.
    """

    __tablename__ = "booking_slot_locks"
    __table_args__ = (Index("ix_booking_slot_locks_booking", "booking_id"),)

    id = Column(String(200), primary_key=True)
    company_id = Column(String(128), nullable=False)
    booking_id = Column(String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    lock_date = Column(Date, nullable=False)
    seat = Column(Integer, nullable=False)
    minute = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
