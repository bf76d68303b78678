# backend/bookbeauty/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. Provider clients are
built lazily from the injected settings; nothing talks to Mollie at import.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import Settings, get_settings
from ...integrations.mollie_client import MollieClientFactory
from ...services.booking_service import BookingService
from ...services.mollie_connect_service import MollieConnectService
from ...services.notification_service import NotificationService
from ...services.payment_service import PaymentService
from ...services.permission_service import PermissionService
from .database import get_db

logger = logging.getLogger(__name__)


def get_config() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def get_mollie_client_factory_singleton() -> MollieClientFactory:
    """Single factory per process; clients themselves are created per call."""
    return MollieClientFactory(get_settings())


def get_mollie_client_factory() -> MollieClientFactory:
    return get_mollie_client_factory_singleton()


def get_permission_service(db: Session = Depends(get_db)) -> PermissionService:
    return PermissionService(db)


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_booking_service(
    db: Session = Depends(get_db),
    config: Settings = Depends(get_config),
    notification_service: NotificationService = Depends(get_notification_service),
    permission_service: PermissionService = Depends(get_permission_service),
) -> BookingService:
    return BookingService(
        db,
        config=config,
        notification_service=notification_service,
        permission_service=permission_service,
    )


def get_mollie_connect_service(
    db: Session = Depends(get_db),
    config: Settings = Depends(get_config),
    client_factory: MollieClientFactory = Depends(get_mollie_client_factory),
    permission_service: PermissionService = Depends(get_permission_service),
) -> MollieConnectService:
    return MollieConnectService(
        db,
        config=config,
        client_factory=client_factory,
        permission_service=permission_service,
    )


def get_payment_service(
    db: Session = Depends(get_db),
    config: Settings = Depends(get_config),
    client_factory: MollieClientFactory = Depends(get_mollie_client_factory),
    connect_service: MollieConnectService = Depends(get_mollie_connect_service),
    notification_service: NotificationService = Depends(get_notification_service),
    permission_service: PermissionService = Depends(get_permission_service),
) -> PaymentService:
    """
    Get PaymentService instance.

    The connect service shares the session and client factory so a token
    refresh during a payment call is visible to the payment transaction.
    """
    return PaymentService(
        db,
        config=config,
        client_factory=client_factory,
        connect_service=connect_service,
        notification_service=notification_service,
        permission_service=permission_service,
    )
