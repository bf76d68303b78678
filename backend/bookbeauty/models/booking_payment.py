"""Booking payment satellite table."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base


class BookingPayment(Base):
    """Mollie payment and refund state for a single booking."""

    __tablename__ = "booking_payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    payment_id = Column(String(64), nullable=True, index=True)
    mode = Column(String(30), nullable=True)
    provider_status = Column(String(30), nullable=True)
    checkout_url = Column(Text, nullable=True)
    # Organization the payment was created under when using a connected account.
    organization_id = Column(String(64), nullable=True)

    platform_fee_cents = Column(Integer, nullable=True)
    salon_net_cents = Column(Integer, nullable=True)

    # Increments only when a new payment cycle starts after failed/canceled.
    payment_cycle = Column(Integer, nullable=False, default=0, server_default=text("0"))
    attempt_started_at = Column(DateTime(timezone=True), nullable=True)
    # Booking status before the first payment attempt; restored when a new cycle starts.
    booking_status_before = Column(String(30), nullable=True)
    last_error = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    last_webhook_at = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    webhook_count = Column(Integer, nullable=False, default=0, server_default=text("0"))

    refund_id = Column(String(64), nullable=True)
    refund_status = Column(String(30), nullable=True)
    refund_amount_cents = Column(Integer, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    booking = relationship("Booking", back_populates="payment_detail")

    @property
    def idempotency_key(self) -> str:
        return f"{self.booking_id}:{self.payment_cycle or 0}"

    def __repr__(self) -> str:
        return f"<BookingPayment booking={self.booking_id} status={self.provider_status}>"
