# backend/bookbeauty/services/payment_service.py
"""
Payment Service for BookBeauty

Drives Mollie payments for bookings:
- create_payment: one outstanding provider payment per booking, reused
  while it is open, new cycle after a failed or canceled payment
- sync_payment / handle_webhook: reconcile provider status into the booking
  with a locked re-read and compare, so repeated deliveries are no-ops
- cancel_and_refund: policy breakdown in integer cents and an exact refund

Provider calls never happen while a row lock is held; every database write
happens in a short transaction before or after the call.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import logging
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from sqlalchemy.orm import Session

from ..constants.payment_status import (
    OPEN_PROVIDER_STATUSES,
    SETTLED_PAYMENT_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
    PaymentStatus,
    map_mollie_status,
    normalize_provider_status,
)
from ..core.config import Settings, settings as default_settings
from ..core.constants import (
    PAYMENT_DESCRIPTION,
    PAYMENT_MODE_CONNECTED,
    PAYMENT_MODE_PLATFORM_ONLY,
)
from ..core.crypto import TokenCodec
from ..core.exceptions import (
    AlreadyPaidException,
    ConflictException,
    DomainException,
    ForbiddenException,
    NotFoundException,
    ServiceException,
    UpstreamFailureException,
    ValidationException,
    truncate_message,
)
from ..core.timezone_utils import utc_now
from ..integrations.mollie_client import (
    MollieClient,
    MollieClientFactory,
    MollieError,
    amount_value,
    checkout_url,
    money,
)
from ..models.booking import PAYMENT_BLOCKING_STATUSES, Booking, BookingStatus
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.company_repository import CompanyRepository
from .base import BaseService
from .mollie_connect_service import MollieConnectService
from .notification_service import NotificationService
from .permission_service import PermissionService
from .refund_policy_engine import (
    CancellationBreakdown,
    CancellationPolicy,
    CancelType,
    RefundPolicyEngine,
    format_percent,
    percent_of,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_WEBHOOK = "webhook"
SOURCE_MANUAL = "manual-sync"
SOURCE_CREATE = "create-payment"
SOURCE_REFUND = "cancel-refund"


def _to_cents(value: Any) -> int:
    if value is None:
        return 0
    try:
        dec_value = Decimal(str(value).replace(",", "."))
    except (InvalidOperation, ValueError):
        return 0
    if not dec_value.is_finite():
        return 0
    cents = dec_value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) * 100
    return max(0, int(cents.to_integral_value(rounding=ROUND_HALF_UP)))


def _metadata_value(payment: Mapping[str, Any], key: str) -> str:
    metadata = payment.get("metadata")
    if isinstance(metadata, Mapping):
        return str(metadata.get(key) or "").strip()
    if isinstance(metadata, str) and key == "bookingId":
        return metadata.strip()
    return ""


def _parse_provider_time(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


class PaymentService(BaseService):
    """Booking payment orchestration against Mollie."""

    def __init__(
        self,
        db: Session,
        config: Optional[Settings] = None,
        client_factory: Optional[MollieClientFactory] = None,
        connect_service: Optional[MollieConnectService] = None,
        repository: Optional[BookingRepository] = None,
        company_repository: Optional[CompanyRepository] = None,
        permission_service: Optional[PermissionService] = None,
        notification_service: Optional[NotificationService] = None,
        refund_engine: Optional[RefundPolicyEngine] = None,
        now_provider: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.config = config or default_settings
        self.client_factory = client_factory or MollieClientFactory(self.config)
        self.repository = repository or BookingRepository(db)
        self.company_repository = company_repository or CompanyRepository(db)
        self.permission_service = permission_service or PermissionService(
            db, self.company_repository
        )
        self.connect_service = connect_service or MollieConnectService(
            db,
            config=self.config,
            client_factory=self.client_factory,
            permission_service=self.permission_service,
            now_provider=now_provider,
        )
        self.notification_service = notification_service or NotificationService(db)
        self.refund_engine = refund_engine or RefundPolicyEngine()
        self._now = now_provider

    # Provider access

    def default_mode(self) -> str:
        return PAYMENT_MODE_PLATFORM_ONLY if self.config.is_test_mode else PAYMENT_MODE_CONNECTED

    def _payment_mode(self, booking: Booking) -> str:
        detail = booking.payment_detail
        stored = (detail.mode if detail is not None else None) or ""
        if stored in (PAYMENT_MODE_PLATFORM_ONLY, PAYMENT_MODE_CONNECTED):
            return stored
        return self.default_mode()

    def _platform_client(self) -> MollieClient:
        if not self.client_factory.platform_key_configured:
            raise ServiceException("Mollie platform API key is not configured", code="NotConfigured")
        return self.client_factory.platform()

    def _run_provider(self, booking: Booking, mode: str, call: Callable[[MollieClient], T]) -> T:
        """Run ``call`` with the client matching how the booking's payment was made."""
        if mode == PAYMENT_MODE_PLATFORM_ONLY:
            return call(self._platform_client())
        return self.connect_service.with_auto_refresh(booking.company_id, call)

    # Lookups

    def _get_booking(self, booking_id: str, for_update: bool = False) -> Booking:
        booking = self.repository.get_by_id(booking_id, for_update=for_update) if booking_id else None
        if booking is None:
            raise NotFoundException("Booking not found", code="BookingNotFound")
        return booking

    def _require_booking_actor(self, actor: Optional[User], booking: Booking) -> None:
        if not self.permission_service.can_act_on_booking(actor, booking):
            raise ForbiddenException("Not allowed to act on this booking")

    def _resolve_amount_cents(self, booking: Booking, requested_cents: Optional[int]) -> int:
        stored = int(booking.amount_cents or 0)
        if stored > 0:
            return stored
        from_price = _to_cents(booking.service_price)
        if from_price > 0:
            return from_price
        return max(0, int(requested_cents or 0))

    # Create

    @BaseService.measure_operation("create_payment")
    def create_payment(
        self,
        actor: Optional[User],
        booking_id: str,
        amount_cents: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Start (or reuse) the provider payment for a booking.

        An open payment with a checkout URL is returned unchanged with
        ``reused=True``. Requests are keyed with an idempotency key that only
        changes when a new payment cycle starts, so a retry after a lost local
        write gets the same provider payment back.
        """
        if not booking_id:
            raise ValidationException("bookingId is required")
        if amount_cents is not None and int(amount_cents) < 0:
            raise ValidationException("amountCents must not be negative", code="InvalidAmount")

        booking = self._get_booking(booking_id)
        self._require_booking_actor(actor, booking)

        existing_payment_id = booking.current_payment_id
        if existing_payment_id and booking.payment_status not in SETTLED_PAYMENT_STATUSES:
            try:
                self._sync_by_payment_id(existing_payment_id, SOURCE_CREATE)
            except (DomainException, MollieError) as exc:
                self.logger.warning(
                    "Pre-create payment sync failed",
                    extra={"booking_id": booking_id, "error": str(exc)},
                )
            booking = self._get_booking(booking_id)

        if booking.status in PAYMENT_BLOCKING_STATUSES:
            raise ConflictException(
                "This booking is cancelled or closed; create a new booking",
                code="BookingClosed",
            )
        if booking.payment_status in SETTLED_PAYMENT_STATUSES:
            raise AlreadyPaidException(booking.id)

        detail = booking.payment_detail
        if (
            detail is not None
            and detail.payment_id
            and detail.checkout_url
            and booking.payment_status == PaymentStatus.PENDING_PAYMENT.value
            and (detail.provider_status or "open") in OPEN_PROVIDER_STATUSES
        ):
            prometheus_metrics.record_payment_created("reused")
            return self._payment_result(booking, reused=True)

        total_cents = self._resolve_amount_cents(booking, amount_cents)
        if total_cents <= 0:
            raise ValidationException("Payment amount is invalid", code="InvalidAmount")
        platform_fee_cents = percent_of(total_cents, self.config.platform_fee_percent)
        salon_net_cents = total_cents - platform_fee_cents

        mode = self.default_mode()
        connected = None
        if mode == PAYMENT_MODE_CONNECTED:
            connected = self.connect_service.get_valid_client(booking.company_id)
        else:
            self._platform_client()

        idempotency_key = self._record_attempt(
            booking.id, total_cents, platform_fee_cents, salon_net_cents, mode
        )

        payload: Dict[str, Any] = {
            "amount": money(total_cents),
            "description": PAYMENT_DESCRIPTION,
            "redirectUrl": f"{self.config.app_base_url}/payment-result?bookingId={booking.id}",
            "metadata": {
                "bookingId": booking.id,
                "companyId": booking.company_id,
                "platformFeeCents": platform_fee_cents,
                "salonNetCents": salon_net_cents,
            },
        }
        if self.config.mollie_webhook_url:
            payload["webhookUrl"] = self.config.mollie_webhook_url
        if connected is not None and connected.profile_id:
            payload["profileId"] = connected.profile_id

        try:
            if connected is not None:
                payment = self.connect_service.with_auto_refresh(
                    booking.company_id,
                    lambda client: client.create_payment(payload, idempotency_key=idempotency_key),
                    connected=connected,
                )
            else:
                payment = self._platform_client().create_payment(
                    payload, idempotency_key=idempotency_key
                )
        except MollieError as exc:
            prometheus_metrics.record_payment_created("failed")
            self._record_attempt_error(booking.id, str(exc))
            self.logger.error(
                "Mollie payment creation failed",
                extra={"booking_id": booking.id, "error": truncate_message(str(exc), 240)},
            )
            raise UpstreamFailureException(str(exc)) from exc

        payment_id = str(payment.get("id") or "").strip()
        checkout = checkout_url(payment)
        if not payment_id or not checkout:
            prometheus_metrics.record_payment_created("failed")
            raise UpstreamFailureException("Mollie response is missing paymentId or checkoutUrl")

        with self.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            detail = self.repository.ensure_payment_detail(booking)
            now = self._now()
            detail.payment_id = payment_id
            detail.checkout_url = checkout
            detail.provider_status = normalize_provider_status(payment.get("status")) or "open"
            detail.organization_id = connected.organization_id if connected else None
            detail.last_error = None
            detail.created_at = detail.created_at or now
            detail.updated_at = now
            booking.payment_status = PaymentStatus.PENDING_PAYMENT.value

        prometheus_metrics.record_payment_created("created")
        self.logger.info(
            "Mollie payment created",
            extra={
                "booking_id": booking.id,
                "payment_id": payment_id,
                "amount_cents": total_cents,
                "platform_fee_cents": platform_fee_cents,
                "mode": mode,
            },
        )
        return self._payment_result(booking, reused=False)

    def _record_attempt(
        self,
        booking_id: str,
        total_cents: int,
        platform_fee_cents: int,
        salon_net_cents: int,
        mode: str,
    ) -> str:
        """Commit the attempt before calling the provider; returns the idempotency key."""
        with self.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            detail = self.repository.ensure_payment_detail(booking)
            if detail.booking_status_before is None:
                detail.booking_status_before = booking.status

            if detail.payment_id and booking.payment_status in (
                PaymentStatus.FAILED.value,
                PaymentStatus.CANCELED.value,
            ):
                detail.payment_cycle = int(detail.payment_cycle or 0) + 1
                detail.payment_id = None
                detail.checkout_url = None
                detail.provider_status = None
                detail.paid_at = None
                booking.payment_status = PaymentStatus.UNSET.value
                if booking.status == BookingStatus.FAILED.value:
                    booking.status = detail.booking_status_before or BookingStatus.CONFIRMED.value

            if not booking.amount_cents:
                booking.amount_cents = total_cents
            detail.platform_fee_cents = platform_fee_cents
            detail.salon_net_cents = salon_net_cents
            detail.mode = mode
            detail.attempt_started_at = self._now()
            detail.updated_at = self._now()
            key = detail.idempotency_key
        return key

    def _record_attempt_error(self, booking_id: str, message: str) -> None:
        with self.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            detail = self.repository.ensure_payment_detail(booking)
            detail.last_error = truncate_message(message, 500)
            detail.updated_at = self._now()

    @staticmethod
    def _payment_result(booking: Booking, *, reused: bool) -> Dict[str, Any]:
        detail = booking.payment_detail
        return {
            "booking_id": booking.id,
            "payment_id": detail.payment_id if detail else None,
            "checkout_url": detail.checkout_url if detail else None,
            "status": booking.payment_status or "",
            "mollie_status": (detail.provider_status if detail else None) or "",
            "amount_cents": int(booking.amount_cents or 0),
            "platform_fee_cents": int((detail.platform_fee_cents if detail else 0) or 0),
            "salon_net_cents": int((detail.salon_net_cents if detail else 0) or 0),
            "reused": reused,
        }

    # Sync and webhook

    @BaseService.measure_operation("sync_payment")
    def sync_payment(
        self,
        booking_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payment_id = (payment_id or "").strip()
        booking_id = (booking_id or "").strip()
        if not payment_id and booking_id:
            booking = self._get_booking(booking_id)
            payment_id = booking.current_payment_id or ""
            if not payment_id:
                raise ValidationException(
                    "No Mollie payment found for this booking", code="NoPayment"
                )
        if not payment_id:
            raise ValidationException("bookingId or paymentId is required")

        try:
            result = self._sync_by_payment_id(payment_id, SOURCE_MANUAL)
        except MollieError as exc:
            raise UpstreamFailureException(str(exc)) from exc

        result["booking_id"] = result.get("booking_id") or booking_id or None
        return result

    def _sync_by_payment_id(self, payment_id: str, source: str) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "booking_id": None,
            "payment_id": payment_id,
            "booking_found": False,
            "payment_status": "",
            "mollie_status": "",
            "previous_payment_status": "",
            "changed": False,
        }
        booking = self.repository.find_by_payment_id(payment_id)
        if booking is None:
            result["skipped"] = "booking_not_found"
            return result

        result.update(
            booking_id=booking.id,
            booking_found=True,
            payment_status=booking.payment_status or "",
            previous_payment_status=booking.payment_status or "",
        )
        mode = self._payment_mode(booking)
        testmode = self.config.is_test_mode if mode == PAYMENT_MODE_CONNECTED else None
        payment = self._run_provider(
            booking, mode, lambda client: client.get_payment(payment_id, testmode=testmode)
        )

        metadata_booking_id = _metadata_value(payment, "bookingId")
        if metadata_booking_id and metadata_booking_id != booking.id:
            self.logger.warning(
                "Payment metadata names a different booking; skipping update",
                extra={
                    "payment_id": payment_id,
                    "booking_id": booking.id,
                    "metadata_booking_id": metadata_booking_id,
                },
            )
            result["skipped"] = "booking_mismatch"
            result["mollie_status"] = normalize_provider_status(payment.get("status"))
            return result

        result.update(self.apply_provider_status(booking.id, payment_id, payment, source))
        return result

    def apply_provider_status(
        self,
        booking_id: str,
        payment_id: str,
        payment: Mapping[str, Any],
        source: str,
    ) -> Dict[str, Any]:
        """
        Write a provider payment status onto the booking.

        Re-reads the booking under lock and only writes when the
        (provider status, mapped status) pair differs from what is stored.
        Settled payments are never moved, failed or canceled ones never go
        back to pending, and reports for a payment that is no longer the
        booking's current one are ignored.
        """
        provider_status = normalize_provider_status(payment.get("status"))
        mapped = map_mollie_status(provider_status)

        with self.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            previous = booking.payment_status or ""
            detail = booking.payment_detail
            stored_provider = (detail.provider_status if detail else None) or ""
            outcome: Dict[str, Any] = {
                "payment_status": previous,
                "mollie_status": provider_status,
                "previous_payment_status": previous,
                "changed": False,
            }

            current_id = booking.current_payment_id
            if current_id and current_id != payment_id:
                outcome["skipped"] = "stale_payment"
                return outcome
            if previous in SETTLED_PAYMENT_STATUSES and mapped != previous:
                outcome["skipped"] = "settled"
                return outcome
            # A late "open" report must not reopen a failed or canceled payment.
            if previous in TERMINAL_PAYMENT_STATUSES and mapped == PaymentStatus.PENDING_PAYMENT.value:
                outcome["skipped"] = "terminal"
                return outcome
            if previous == mapped and stored_provider == provider_status:
                return outcome

            detail = self.repository.ensure_payment_detail(booking)
            now = self._now()
            detail.payment_id = payment_id
            detail.provider_status = provider_status
            detail.updated_at = now
            if source == SOURCE_WEBHOOK:
                detail.last_webhook_at = now
                detail.webhook_count = int(detail.webhook_count or 0) + 1
            else:
                detail.last_synced_at = now

            booking.payment_status = mapped
            if booking.status not in PAYMENT_BLOCKING_STATUSES:
                if mapped == PaymentStatus.PAID.value:
                    booking.status = BookingStatus.PAID.value
                elif mapped in (PaymentStatus.FAILED.value, PaymentStatus.CANCELED.value):
                    booking.status = BookingStatus.FAILED.value
            if mapped == PaymentStatus.PAID.value:
                detail.paid_at = _parse_provider_time(payment.get("paidAt")) or detail.paid_at or now

            outcome.update(payment_status=mapped, changed=True)

        self.logger.info(
            "Payment status applied",
            extra={
                "booking_id": booking_id,
                "payment_id": payment_id,
                "from": previous,
                "to": mapped,
                "mollie_status": provider_status,
                "source": source,
            },
        )
        return outcome

    def handle_webhook(self, payment_id: Optional[str]) -> Dict[str, Any]:
        """
        Process a Mollie webhook delivery.

        Never raises: every outcome, including internal failures, is reported
        in the returned body so the endpoint can always answer 200.
        """
        payment_id = (payment_id or "").strip()
        if not payment_id:
            prometheus_metrics.record_webhook("skipped")
            return {"received": True, "skipped": "missing_payment_id"}

        try:
            result = self._sync_by_payment_id(payment_id, SOURCE_WEBHOOK)
        except Exception as exc:
            prometheus_metrics.record_webhook("error")
            self.logger.error(
                "Mollie webhook processing error",
                extra={"payment_id": payment_id, "error": truncate_message(str(exc), 240)},
                exc_info=True,
            )
            return {
                "received": True,
                "payment_id": payment_id,
                "processing_error": truncate_message(str(exc) or type(exc).__name__),
            }

        if result.get("skipped"):
            prometheus_metrics.record_webhook("skipped")
        else:
            prometheus_metrics.record_webhook("changed" if result["changed"] else "unchanged")
        return dict(result, received=True)

    # Cancel and refund

    @BaseService.measure_operation("cancel_and_refund")
    def cancel_and_refund(
        self,
        actor: Optional[User],
        booking_id: str,
        cancel_type: str = CancelType.NORMAL.value,
        reason: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not booking_id:
            raise ValidationException("bookingId is required")
        kind = CancelType.parse(cancel_type)
        requester = (requested_by or "").strip().lower() or "customer"
        reason_text = (reason or "").strip()

        booking = self._get_booking(booking_id)
        company = self.company_repository.get_by_id(booking.company_id)
        if company is None:
            raise NotFoundException("Company not found", code="CompanyNotFound")
        self._require_booking_actor(actor, booking)

        detail = booking.payment_detail
        if detail is not None and detail.refund_id:
            return {
                "booking_id": booking.id,
                "already_refunded": True,
                "mollie_refund_id": detail.refund_id,
                "status": booking.status,
            }

        policy = CancellationPolicy.from_company(
            company.cancellation_policy,
            default_hold_percent=self.config.default_hold_percent,
            default_platform_fee_percent_rule=self.config.default_platform_fee_percent_rule,
            default_late_window_hours=self.config.default_late_window_hours,
        )

        payment_id = booking.current_payment_id
        if payment_id and booking.payment_status == PaymentStatus.PENDING_PAYMENT.value:
            try:
                self._sync_by_payment_id(payment_id, SOURCE_REFUND)
            except (DomainException, MollieError) as exc:
                self.logger.warning(
                    "Pre-refund payment sync failed",
                    extra={"booking_id": booking.id, "error": str(exc)},
                )
            booking = self._get_booking(booking_id)

        if booking.payment_status != PaymentStatus.PAID.value:
            return self._settle_unpaid(actor, booking.id, kind, reason_text, requester, policy)

        total_cents = int(booking.amount_cents or 0) or _to_cents(booking.service_price)
        if total_cents <= 0:
            raise ValidationException("Booking amount is invalid", code="InvalidAmount")
        breakdown = self.refund_engine.compute(
            total_cents=total_cents, cancel_type=kind, policy=policy
        )
        if breakdown.refunded_cents <= 0:
            raise ValidationException(
                "Refund amount is zero; no refund created", code="ZeroRefund"
            )

        refund_value = amount_value(breakdown.refunded_cents)
        description = (
            f"Late cancellation refund ({refund_value} EUR)"
            if kind is CancelType.LATE
            else f"Cancellation refund ({refund_value} EUR)"
        )
        payload = {
            "amount": money(breakdown.refunded_cents),
            "description": description,
            "metadata": {
                "bookingId": booking.id,
                "companyId": booking.company_id,
                "requestedBy": requester,
                "cancelType": kind.value,
                "cancelReason": reason_text,
                "holdPercent": format_percent(breakdown.hold_percent),
                "platformFeePercentRule": format_percent(breakdown.platform_fee_percent_rule),
                "holdCents": str(breakdown.hold_cents),
            },
        }
        mode = self._payment_mode(booking)
        current_payment_id = booking.current_payment_id or ""
        try:
            refund = self._run_provider(
                booking,
                mode,
                lambda client: client.create_refund(
                    current_payment_id, payload, idempotency_key=f"{booking.id}:refund"
                ),
            )
        except MollieError as exc:
            prometheus_metrics.record_refund(kind.value, "failed")
            raise UpstreamFailureException(str(exc)) from exc

        refund_id = str(refund.get("id") or "").strip()
        if not refund_id:
            prometheus_metrics.record_refund(kind.value, "failed")
            raise UpstreamFailureException("Mollie refund response is missing an id")

        with self.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            detail = self.repository.ensure_payment_detail(booking)
            if detail.refund_id:
                return {
                    "booking_id": booking.id,
                    "already_refunded": True,
                    "mollie_refund_id": detail.refund_id,
                    "status": booking.status,
                }
            now = self._now()
            detail.refund_id = refund_id
            detail.refund_status = str(refund.get("status") or "").strip() or None
            detail.refund_amount_cents = breakdown.refunded_cents
            detail.refunded_at = now
            detail.updated_at = now
            booking.payment_status = PaymentStatus.REFUNDED.value
            self._close_booking(booking, breakdown.resulting_status, actor, now)
            self._record_breakdown(booking, breakdown, policy, reason_text, requester, actor)
            self._notify_cancellation(booking, actor, requester)

        prometheus_metrics.record_refund(kind.value, "success")
        self.logger.info(
            "Booking refunded",
            extra={
                "booking_id": booking.id,
                "refund_id": refund_id,
                "cancel_type": kind.value,
                **breakdown.to_payload(),
            },
        )
        return self._refund_result(booking, breakdown, refund_id)

    def _settle_unpaid(
        self,
        actor: Optional[User],
        booking_id: str,
        kind: CancelType,
        reason: str,
        requester: str,
        policy: CancellationPolicy,
    ) -> Dict[str, Any]:
        """Cancel a booking that never got paid: no provider call, zero breakdown."""
        with self.transaction():
            booking = self._get_booking(booking_id, for_update=True)
            if booking.status in PAYMENT_BLOCKING_STATUSES:
                raise ConflictException(
                    f"Booking is already {booking.status}", code="BookingClosed"
                )
            if booking.payment_status == PaymentStatus.PAID.value:
                raise ConflictException("Booking was paid meanwhile; retry", code="Retry")

            now = self._now()
            detail = booking.payment_detail
            abandoned_payment_id = None
            if detail is not None and booking.payment_status == PaymentStatus.PENDING_PAYMENT.value:
                # Only the local record changes; the checkout stays open at Mollie.
                booking.payment_status = PaymentStatus.CANCELED.value
                detail.updated_at = now
                abandoned_payment_id = booking.current_payment_id

            breakdown = self.refund_engine.compute(total_cents=0, cancel_type=kind, policy=policy)
            self._close_booking(booking, BookingStatus.CANCELLED_BY_CUSTOMER.value, actor, now)
            self._record_breakdown(booking, breakdown, policy, reason, requester, actor)
            self._notify_cancellation(booking, actor, requester)

        if abandoned_payment_id:
            self.logger.warning(
                "Open payment canceled locally only; if the customer still pays, "
                "POST /api/v1/payments/sync picks up the paid status",
                extra={"booking_id": booking.id, "payment_id": abandoned_payment_id},
            )
        prometheus_metrics.record_refund(kind.value, "zero_amount")
        return dict(self._refund_result(booking, breakdown, None), settled_without_payment=True)

    def _close_booking(
        self, booking: Booking, status: str, actor: Optional[User], now: datetime
    ) -> None:
        booking.status = status
        booking.cancelled_at = now
        booking.cancelled_by_id = actor.id if actor else None
        self.repository.release_slot_locks(booking.id)

    def _record_breakdown(
        self,
        booking: Booking,
        breakdown: CancellationBreakdown,
        policy: CancellationPolicy,
        reason: str,
        requester: str,
        actor: Optional[User],
    ) -> None:
        self.repository.ensure_cancellation_detail(
            booking,
            cancel_type=breakdown.cancel_type.value,
            reason=reason or None,
            requested_by=requester,
            actor_id=actor.id if actor else None,
            legacy_status=breakdown.legacy_status,
            hold_percent=breakdown.hold_percent,
            platform_fee_percent_rule=breakdown.platform_fee_percent_rule,
            late_window_hours=policy.late_window_hours,
            **breakdown.to_payload(),
        )

    def _notify_cancellation(self, booking: Booking, actor: Optional[User], requester: str) -> None:
        to_company = requester == "customer"
        if to_company:
            company = self.company_repository.get_by_id(booking.company_id)
            recipient = (company.owner_id if company else None) or booking.company_id
        else:
            recipient = booking.customer_id
        result = self.notification_service.notify(
            recipient_id=recipient,
            recipient_role="company" if to_company else "customer",
            actor_id=actor.id if actor else None,
            type="booking_cancelled",
            title="Booking cancelled",
            booking_id=booking.id,
        )
        if not result.ok:
            self.logger.info(
                "Cancellation notification not delivered",
                extra={"booking_id": booking.id, "error": result.error},
            )

    @staticmethod
    def _refund_result(
        booking: Booking, breakdown: CancellationBreakdown, refund_id: Optional[str]
    ) -> Dict[str, Any]:
        return {
            "booking_id": booking.id,
            "already_refunded": False,
            "mollie_refund_id": refund_id,
            "status": booking.status,
            "payment_status": booking.payment_status or "",
            "cancel_type": breakdown.cancel_type.value,
            **breakdown.to_payload(),
        }

    # Health

    def payments_health(self) -> Dict[str, Any]:
        """Which provider settings are present; never exposes the values."""
        return {
            "mode": self.config.mollie_mode,
            "platform_key_configured": self.client_factory.platform_key_configured,
            "webhook_url_configured": bool(self.config.mollie_webhook_url),
            "app_base_url_configured": bool(self.config.app_base_url),
            "oauth_configured": self.config.oauth_configured,
            "token_encryption_enabled": TokenCodec.from_settings(self.config).encryption_enabled,
        }
