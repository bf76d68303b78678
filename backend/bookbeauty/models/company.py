# backend/bookbeauty/models/company.py
"""
Salon (company) models.

A company carries its booking settings (interval, capacity, weekly opening
hours) and its cancellation policy. The company id doubles as the uid of the
account that registered the salon.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.constants import DEFAULT_INTERVAL_MINUTES
from ..database import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(128), primary_key=True)
    owner_id = Column(String(128), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Address (used when inviting the salon to Mollie)
    street = Column(String(255), nullable=True)
    postal_code = Column(String(20), nullable=True)
    city = Column(String(120), nullable=True)
    country = Column(String(2), nullable=True, default="NL")

    # Booking settings
    booking_enabled = Column(Boolean, nullable=False, default=True)
    booking_interval_minutes = Column(Integer, nullable=False, default=DEFAULT_INTERVAL_MINUTES)
    booking_capacity = Column(Integer, nullable=False, default=1)
    auto_confirm = Column(Boolean, nullable=False, default=False)
    # {"mon": {"closed": false, "ranges": [{"start": "09:00", "end": "18:00"}]}, ...}
    week_schedule = Column(JSON, nullable=True)
    # {"hold_percent": 15, "platform_fee_percent_rule": 8, "late_window_hours": 24}
    cancellation_policy = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    staff = relationship("CompanyStaff", back_populates="company", cascade="all, delete-orphan")
    services = relationship("Service", back_populates="company")
    mollie_account = relationship(
        "CompanyMollieAccount",
        back_populates="company",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Company {self.id} {self.name!r}>"


class CompanyStaff(Base):
    __tablename__ = "company_staff"
    __table_args__ = (UniqueConstraint("company_id", "user_id", name="uq_company_staff_member"),)

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(
        String(128), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(128), nullable=False, index=True)
    is_owner = Column(Boolean, nullable=False, default=False)

    company = relationship("Company", back_populates="staff")


class BookingBlock(Base):
    """A period on a date during which the salon takes no bookings."""

    __tablename__ = "booking_blocks"
    __table_args__ = (Index("ix_booking_blocks_company_date", "company_id", "block_date"),)

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(
        String(128), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    block_date = Column(Date, nullable=False)
    start_minutes = Column(Integer, nullable=False)
    end_minutes = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
