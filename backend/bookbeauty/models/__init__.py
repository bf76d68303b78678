"""
Database models for the BookBeauty platform.

The models are organized by functionality:
- Users and salons (companies, staff, opening-hour blocks)
- Services and bookings
- Payment and cancellation satellites of a booking
- Connected Mollie accounts and OAuth state
- Slot locks and notifications
"""

from .booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from .booking_cancellation import BookingCancellation
from .booking_payment import BookingPayment
from .booking_slot_lock import BookingSlotLock
from .company import BookingBlock, Company, CompanyStaff
from .mollie_account import CompanyMollieAccount
from .notification import Notification
from .oauth_state import OAuthState
from .service import Service
from .user import User, UserRole

__all__ = [
    "ACTIVE_BOOKING_STATUSES",
    "Booking",
    "BookingBlock",
    "BookingCancellation",
    "BookingPayment",
    "BookingSlotLock",
    "BookingStatus",
    "Company",
    "CompanyMollieAccount",
    "CompanyStaff",
    "Notification",
    "OAuthState",
    "Service",
    "User",
    "UserRole",
]
