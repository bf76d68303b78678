# backend/bookbeauty/services/notification_service.py
"""
In-app notifications for booking events.

Delivery is best-effort: ``notify`` never raises. It writes inside its own
savepoint and hands back a ``DeliveryResult`` so each caller decides whether
a failed notification matters for the operation it belongs to.
"""

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.notification import Notification
from ..repositories.notification_repository import NotificationRepository
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    notification_id: Optional[str] = None
    error: Optional[str] = None


class NotificationService(BaseService):
    def __init__(self, db: Session, repository: Optional[NotificationRepository] = None):
        super().__init__(db)
        self.repository = repository or NotificationRepository(db)

    def notify(
        self,
        *,
        recipient_id: Optional[str],
        recipient_role: str,
        type: str,
        title: str,
        body: Optional[str] = None,
        booking_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> DeliveryResult:
        if not recipient_id:
            return DeliveryResult(ok=False, error="missing recipient")

        try:
            with self.db.begin_nested():
                notification = Notification(
                    recipient_id=recipient_id,
                    recipient_role=recipient_role,
                    actor_id=actor_id,
                    type=type,
                    title=title,
                    body=body,
                    booking_id=booking_id,
                    read=False,
                )
                self.db.add(notification)
                self.db.flush()
        except SQLAlchemyError as exc:
            self.logger.warning(
                "Notification delivery failed",
                extra={"recipient_id": recipient_id, "type": type, "error": str(exc)},
            )
            return DeliveryResult(ok=False, error=str(exc))

        return DeliveryResult(ok=True, notification_id=notification.id)
