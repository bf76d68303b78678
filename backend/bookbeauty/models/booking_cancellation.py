"""Cancellation breakdown satellite table."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class BookingCancellation(Base):
    """Money breakdown and policy snapshot recorded when a booking is cancelled."""

    __tablename__ = "booking_cancellations"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    cancel_type = Column(String(10), nullable=False)
    reason = Column(Text, nullable=True)
    requested_by = Column(String(20), nullable=True)
    actor_id = Column(String(128), nullable=True)
    # cancelled_with_fee / cancelled_by_customer, kept for older app versions
    legacy_status = Column(String(40), nullable=True)

    total_cents = Column(Integer, nullable=False, default=0)
    hold_cents = Column(Integer, nullable=False, default=0)
    platform_kept_cents = Column(Integer, nullable=False, default=0)
    company_kept_cents = Column(Integer, nullable=False, default=0)
    refunded_cents = Column(Integer, nullable=False, default=0)

    # Policy snapshot
    hold_percent = Column(Numeric(5, 2), nullable=False)
    platform_fee_percent_rule = Column(Numeric(5, 2), nullable=False)
    late_window_hours = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    booking = relationship("Booking", back_populates="cancellation_detail")

    def breakdown(self) -> dict:
        return {
            "total_cents": self.total_cents,
            "hold_cents": self.hold_cents,
            "platform_kept_cents": self.platform_kept_cents,
            "company_kept_cents": self.company_kept_cents,
            "refunded_cents": self.refunded_cents,
        }
