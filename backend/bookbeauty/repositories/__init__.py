# backend/bookbeauty/repositories/__init__.py
"""
Repository Pattern Implementation for BookBeauty

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- BookingRepository: Bookings, payment/cancellation satellites, slot locks
- CompanyRepository: Salons, owner staff, services and users
- MollieAccountRepository / OAuthStateRepository: Mollie Connect state
- NotificationRepository: In-app notification inbox
"""

from .base_repository import BaseRepository
from .booking_repository import PAYMENT_ID_LOOKUPS, BookingRepository, PaymentIdLookup
from .company_repository import CompanyRepository
from .mollie_account_repository import MollieAccountRepository, OAuthStateRepository
from .notification_repository import NotificationRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "CompanyRepository",
    "MollieAccountRepository",
    "NotificationRepository",
    "OAuthStateRepository",
    "PAYMENT_ID_LOOKUPS",
    "PaymentIdLookup",
]
