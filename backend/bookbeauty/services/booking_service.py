# backend/bookbeauty/services/booking_service.py
"""
Booking Service for BookBeauty

Handles the booking side of the salon calendar:
- Listing bookable slots for a service on a date
- Creating bookings under per-seat slot locks
- Salon accept/decline and customer cancellation of unpaid bookings
- Check-in codes and customer check-in
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
import logging
import secrets
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    GoneException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import (
    ensure_utc,
    get_booking_timezone,
    local_start_to_utc,
    local_today_and_minutes,
    to_epoch_ms,
    utc_now,
)
from ..models.booking import Booking, BookingStatus
from ..models.booking_slot_lock import BookingSlotLock, slot_lock_key
from ..models.company import Company
from ..models.service import Service
from ..models.user import User
from ..repositories.booking_repository import BookingRepository
from ..repositories.company_repository import CompanyRepository
from . import slot_allocator
from .base import BaseService
from .notification_service import NotificationService
from .permission_service import PermissionService

logger = logging.getLogger(__name__)

# A start this far in the past is still accepted to absorb clock drift.
PAST_START_TOLERANCE = timedelta(minutes=1)

CHECK_IN_PREVIEW = "preview"
CHECK_IN_CONFIRM = "confirm"

COMPANY_DECISIONS = frozenset({BookingStatus.CONFIRMED.value, BookingStatus.DECLINED.value})
CUSTOMER_CANCELLABLE = frozenset({BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value})
CHECK_IN_READY = frozenset({BookingStatus.CONFIRMED.value, BookingStatus.PAID.value})


def lock_minutes(occupied_start: int, occupied_end: int) -> List[int]:
    """Every minute of the half-open window ``[occupied_start, occupied_end)``."""
    return list(range(occupied_start, max(occupied_start + 1, occupied_end)))


class BookingService(BaseService):
    """Salon calendar operations for customers and salon staff."""

    def __init__(
        self,
        db: Session,
        config: Optional[Settings] = None,
        repository: Optional[BookingRepository] = None,
        company_repository: Optional[CompanyRepository] = None,
        notification_service: Optional[NotificationService] = None,
        permission_service: Optional[PermissionService] = None,
        now_provider: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.config = config or default_settings
        self.repository = repository or BookingRepository(db)
        self.company_repository = company_repository or CompanyRepository(db)
        self.notification_service = notification_service or NotificationService(db)
        self.permission_service = permission_service or PermissionService(
            db, self.company_repository
        )
        self._now = now_provider
        self._tz = get_booking_timezone(self.config.booking_timezone)

    # Slots

    @BaseService.measure_operation("list_slots")
    def list_slots(
        self,
        company_id: str,
        service_id: str,
        booking_date: date,
        *,
        capacity_units: int = 1,
        include_unavailable: bool = False,
    ) -> List[slot_allocator.Slot]:
        company, service = self._load_company_service(company_id, service_id)
        if not company.is_active or not service.is_active:
            return []

        settings = slot_allocator.settings_from_company(company)
        shape = slot_allocator.service_shape(service, settings)
        today, now_minutes = local_today_and_minutes(self._now(), self._tz)
        return slot_allocator.compute_slots(
            booking_date=booking_date,
            settings=settings,
            shape=shape,
            reservations=self._reservations(company.id, booking_date),
            blocks=self._blocks(company.id, booking_date),
            requested_units=capacity_units,
            today=today,
            now_minutes=now_minutes,
            include_unavailable=include_unavailable,
            tz=self._tz,
        )

    # Create

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        customer: User,
        company_id: str,
        service_id: str,
        booking_date: date,
        start_minutes: int,
        *,
        note: Optional[str] = None,
        customer_name: Optional[str] = None,
        capacity_units: int = 1,
    ) -> Booking:
        """
        Reserve a slot for ``customer``.

        Availability is re-checked and seat locks are inserted in the same
        transaction as the booking row, so two requests racing for the last
        seat cannot both succeed.
        """
        company, service = self._load_company_service(company_id, service_id)
        if not company.is_active:
            raise BusinessRuleException("Salon is not accepting bookings", code="CompanyInactive")
        if not service.is_active:
            raise BusinessRuleException("Service is not available", code="ServiceInactive")

        settings = slot_allocator.settings_from_company(company)
        if not settings.enabled:
            raise BusinessRuleException("Online booking is disabled", code="BookingDisabled")

        units = int(capacity_units or 1)
        if units < 1:
            raise ValidationException("capacity_units must be at least 1")
        if start_minutes < 0 or start_minutes >= 24 * 60:
            raise ValidationException("start_minutes must be within the day")

        start_at = local_start_to_utc(booking_date, start_minutes, self._tz)
        if start_at < self._now() - PAST_START_TOLERANCE:
            raise ValidationException("Cannot book a time in the past", code="StartInPast")

        shape = slot_allocator.service_shape(service, settings)
        occupied_start, occupied_end = slot_allocator.occupied_window(start_minutes, shape)
        day = settings.day(booking_date)
        if not day.open:
            raise BusinessRuleException("Salon is closed on this day", code="DayClosed")
        if not slot_allocator.fits_any_range(day.ranges, occupied_start, occupied_end):
            raise BusinessRuleException("Time is outside opening hours", code="OutsideHours")
        if slot_allocator.overlaps_any(
            self._blocks(company.id, booking_date), occupied_start, occupied_end
        ):
            raise BookingConflictException("This time is blocked by the salon")
        if units > shape.capacity:
            raise BookingConflictException(
                "Requested capacity exceeds what the salon can serve",
                details={"total_capacity": shape.capacity},
            )

        try:
            with self.repository.transaction():
                reserved = slot_allocator.reserved_units(
                    self._reservations(company.id, booking_date), occupied_start, occupied_end
                )
                if reserved + units > shape.capacity:
                    raise BookingConflictException(
                        details={"remaining_capacity": max(0, shape.capacity - reserved)}
                    )

                minutes = lock_minutes(occupied_start, occupied_end)
                seats = self._free_seats(company.id, booking_date, shape.capacity, minutes, units)

                booking = self.repository.create(
                    company_id=company.id,
                    service_id=service.id,
                    customer_id=customer.id,
                    booking_date=booking_date,
                    start_minutes=start_minutes,
                    start_at=start_at,
                    duration_minutes=shape.duration,
                    buffer_before_minutes=shape.buffer_before,
                    buffer_after_minutes=shape.buffer_after,
                    capacity_units=units,
                    company_name=company.name,
                    service_name=service.name,
                    customer_name=(customer_name or customer.display_name or "").strip() or None,
                    customer_note=(note or "").strip() or None,
                    service_price=service.price,
                    status=(
                        BookingStatus.CONFIRMED.value
                        if settings.auto_confirm
                        else BookingStatus.PENDING.value
                    ),
                    payment_status="",
                )
                if settings.auto_confirm:
                    booking.confirmed_at = self._now()

                self.repository.add_slot_locks(
                    BookingSlotLock(
                        id=slot_lock_key(company.id, booking_date.isoformat(), seat, minute),
                        company_id=company.id,
                        booking_id=booking.id,
                        lock_date=booking_date,
                        seat=seat,
                        minute=minute,
                    )
                    for seat in seats
                    for minute in minutes
                )

                self.notification_service.notify(
                    recipient_id=company.owner_id or company.id,
                    recipient_role="company",
                    actor_id=customer.id,
                    type="booking_created",
                    title="New booking",
                    body=f"{service.name} on {booking_date.isoformat()} at "
                    f"{slot_allocator.format_hhmm(start_minutes)}",
                    booking_id=booking.id,
                )
        except IntegrityError as exc:
            raise BookingConflictException(
                details={"booking_date": booking_date.isoformat(), "start_minutes": start_minutes}
            ) from exc

        self.logger.info(
            "Booking created",
            extra={"booking_id": booking.id, "company_id": company.id, "status": booking.status},
        )
        return booking

    # Status changes

    @BaseService.measure_operation("set_status_by_company")
    def set_status_by_company(self, actor: User, booking_id: str, status: str) -> Booking:
        target = (status or "").strip().lower()
        if target not in COMPANY_DECISIONS:
            raise ValidationException("status must be 'confirmed' or 'declined'")

        with self.repository.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            if not self.permission_service.can_manage_company(actor, booking.company_id):
                raise ForbiddenException("Not allowed to manage this booking")
            if booking.status != BookingStatus.PENDING.value:
                raise ConflictException(
                    f"Booking is {booking.status}; only pending bookings can be {target}",
                    code="InvalidTransition",
                )

            booking.status = target
            if target == BookingStatus.CONFIRMED.value:
                booking.confirmed_at = self._now()
            else:
                self.repository.release_slot_locks(booking.id)

            self.notification_service.notify(
                recipient_id=booking.customer_id,
                recipient_role="customer",
                actor_id=actor.id,
                type=f"booking_{target}",
                title="Booking confirmed" if target == "confirmed" else "Booking declined",
                booking_id=booking.id,
            )
        return booking

    @BaseService.measure_operation("cancel_by_customer")
    def cancel_by_customer(self, actor: User, booking_id: str) -> Booking:
        with self.repository.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            if actor.id != booking.customer_id and not actor.is_admin:
                raise ForbiddenException("Only the customer can cancel this booking")
            if booking.status not in CUSTOMER_CANCELLABLE:
                raise ConflictException(
                    f"Booking is {booking.status} and cannot be cancelled here",
                    code="InvalidTransition",
                )
            if booking.payment_status == "paid":
                raise ConflictException(
                    "Paid bookings are cancelled through the refund flow", code="UseRefundFlow"
                )

            booking.status = BookingStatus.CANCELLED_BY_CUSTOMER.value
            booking.cancelled_at = self._now()
            booking.cancelled_by_id = actor.id
            self.repository.release_slot_locks(booking.id)

            self.notification_service.notify(
                recipient_id=self._company_recipient(booking.company_id),
                recipient_role="company",
                actor_id=actor.id,
                type="booking_cancelled",
                title="Booking cancelled by customer",
                booking_id=booking.id,
            )
        return booking

    # Check-in

    @BaseService.measure_operation("issue_check_in_code")
    def issue_check_in_code(self, actor: User, booking_id: str) -> Dict[str, Any]:
        with self.repository.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            if not self.permission_service.can_manage_company(actor, booking.company_id):
                raise ForbiddenException("Not allowed to manage this booking")
            if booking.status not in CHECK_IN_READY:
                raise ConflictException(
                    "Check-in codes are only issued for confirmed bookings",
                    code="NotCheckInReady",
                )

            code = f"{secrets.randbelow(1_000_000):06d}"
            expires_at = self._now() + timedelta(minutes=self.config.check_in_code_ttl_minutes)
            booking.check_in_code = code
            booking.check_in_last_code = code
            booking.check_in_code_expires_at = expires_at

        return {"booking_id": booking.id, "code": code, "expires_at_ms": to_epoch_ms(expires_at)}

    @BaseService.measure_operation("check_in")
    def check_in(
        self,
        actor: User,
        booking_id: str,
        code: Optional[str],
        mode: str = CHECK_IN_PREVIEW,
    ) -> Dict[str, Any]:
        if mode not in (CHECK_IN_PREVIEW, CHECK_IN_CONFIRM):
            raise ValidationException("mode must be 'preview' or 'confirm'")

        if mode == CHECK_IN_PREVIEW:
            booking = self._get_booking(booking_id)
            if not self.permission_service.can_act_on_booking(actor, booking):
                raise ForbiddenException("Not allowed to view this booking")
            return self._check_in_summary(booking)

        with self.repository.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            if actor.id != booking.customer_id:
                raise ForbiddenException("Only the customer can check in")
            if booking.status == BookingStatus.CHECKED_IN.value:
                return dict(self._check_in_summary(booking), already_checked_in=True)

            supplied = (code or "").strip()
            if not supplied or supplied != (booking.check_in_code or ""):
                raise ValidationException("Invalid check-in code", code="InvalidCode")
            expires_at = ensure_utc(booking.check_in_code_expires_at)
            if expires_at is None or expires_at <= self._now():
                raise GoneException("Check-in code has expired", code="CodeExpired")
            if not self._payment_settled(booking):
                raise ConflictException("Booking is not paid", code="PaymentRequired")
            if booking.status not in CHECK_IN_READY:
                raise ConflictException(
                    f"Booking is {booking.status} and cannot be checked in",
                    code="NotCheckInReady",
                )

            booking.status = BookingStatus.CHECKED_IN.value
            booking.checked_in_at = self._now()
            booking.check_in_code = None
            booking.check_in_code_expires_at = None

            self.notification_service.notify(
                recipient_id=self._company_recipient(booking.company_id),
                recipient_role="company",
                actor_id=actor.id,
                type="booking_checked_in",
                title="Customer checked in",
                booking_id=booking.id,
            )

        return dict(self._check_in_summary(booking), already_checked_in=False)

    # Helpers

    def _load_company_service(self, company_id: str, service_id: str) -> Tuple[Company, Service]:
        company = self.company_repository.get_by_id(company_id) if company_id else None
        if company is None:
            raise NotFoundException("Company not found", code="CompanyNotFound")
        service = self.company_repository.get_service(service_id) if service_id else None
        if service is None or service.company_id != company.id:
            raise NotFoundException("Service not found", code="ServiceNotFound")
        return company, service

    def _get_booking(self, booking_id: str, for_update: bool = False) -> Booking:
        booking = self.repository.get_by_id(booking_id, for_update=for_update) if booking_id else None
        if booking is None:
            raise NotFoundException("Booking not found", code="BookingNotFound")
        return booking

    def _reservations(self, company_id: str, booking_date: date) -> List[slot_allocator.Reservation]:
        return [
            slot_allocator.Reservation(
                start=booking.occupied_start_minutes,
                end=booking.occupied_end_minutes,
                units=int(booking.capacity_units or 1),
            )
            for booking in self.repository.list_active_for_company_date(company_id, booking_date)
        ]

    def _blocks(self, company_id: str, booking_date: date) -> List[Tuple[int, int]]:
        return [
            (int(block.start_minutes), int(block.end_minutes))
            for block in self.repository.list_blocks(company_id, booking_date)
        ]

    def _free_seats(
        self,
        company_id: str,
        booking_date: date,
        capacity: int,
        minutes: Sequence[int],
        units: int,
    ) -> List[int]:
        """First ``units`` seats whose locks are all free for every minute mark."""
        chosen: List[int] = []
        day_key = booking_date.isoformat()
        for seat in range(capacity):
            keys = [slot_lock_key(company_id, day_key, seat, minute) for minute in minutes]
            if not self.repository.get_slot_lock_ids(keys):
                chosen.append(seat)
                if len(chosen) == units:
                    return chosen
        raise BookingConflictException(details={"reason": "no free seat"})

    def _company_recipient(self, company_id: str) -> str:
        company = self.company_repository.get_by_id(company_id)
        if company is not None and company.owner_id:
            return company.owner_id
        return company_id

    @staticmethod
    def _payment_settled(booking: Booking) -> bool:
        if booking.payment_status == "paid":
            return True
        # Bookings from before online payment never carry a payment status or id.
        return not booking.payment_status and booking.current_payment_id is None

    @staticmethod
    def _check_in_summary(booking: Booking) -> Dict[str, Any]:
        return {
            "booking_id": booking.id,
            "company_id": booking.company_id,
            "company_name": booking.company_name,
            "service_name": booking.service_name,
            "customer_name": booking.customer_name,
            "booking_date": booking.booking_date.isoformat(),
            "start_minutes": booking.start_minutes,
            "start_at_ms": to_epoch_ms(booking.start_at),
            "status": booking.status,
            "payment_status": booking.payment_status or "",
            "checked_in": booking.status == BookingStatus.CHECKED_IN.value,
        }
