# backend/bookbeauty/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_active_user, get_current_user, get_token_verifier
from .database import get_db
from .services import (
    get_booking_service,
    get_config,
    get_mollie_client_factory,
    get_mollie_connect_service,
    get_notification_service,
    get_payment_service,
    get_permission_service,
)

__all__ = [
    # Auth
    "get_current_user",
    "get_current_active_user",
    "get_token_verifier",
    # Database
    "get_db",
    # Services
    "get_config",
    "get_mollie_client_factory",
    "get_permission_service",
    "get_notification_service",
    "get_booking_service",
    "get_mollie_connect_service",
    "get_payment_service",
]
