import json
import logging
from decimal import Decimal

from pydantic import SecretStr
import pytest

from bookbeauty.core.exceptions import (
    AlreadyPaidException,
    ConflictException,
    ForbiddenException,
    MerchantNotLinkedException,
    ServiceException,
    UpstreamFailureException,
    ValidationException,
)
from bookbeauty.integrations.mollie_client import MollieClientFactory
from bookbeauty.models.booking_slot_lock import BookingSlotLock
from bookbeauty.models.notification import Notification
from bookbeauty.services.payment_service import PaymentService, _to_cents

from tests.factories.booking_builders import make_booking
from tests.factories.mollie_builders import link_account


@pytest.fixture
def payment_service(unit_db, test_config, client_factory, clock):
    return PaymentService(
        unit_db, config=test_config, client_factory=client_factory, now_provider=clock
    )


@pytest.fixture
def booking(unit_db, salon):
    return make_booking(unit_db, salon["company"], salon["service"], salon["customer"])


def _body(request):
    return json.loads(request.content)


def test_to_cents_rounds_half_up():
    assert _to_cents(Decimal("25.00")) == 2500
    assert _to_cents("12,345") == 1235
    assert _to_cents("0.005") == 1
    assert _to_cents(None) == 0
    assert _to_cents("abc") == 0
    assert _to_cents("-3") == 0


class TestCreatePayment:
    def test_platform_payment_uses_service_price_and_fee(
        self, payment_service, salon, booking, fake_mollie
    ):
        result = payment_service.create_payment(salon["customer"], booking.id)

        assert result["reused"] is False
        assert result["amount_cents"] == 2500
        assert result["platform_fee_cents"] == 200
        assert result["salon_net_cents"] == 2300
        assert result["status"] == "pending_payment"
        assert result["mollie_status"] == "open"
        assert result["checkout_url"] == f"https://mollie.test/checkout/{result['payment_id']}"

        (request,) = fake_mollie.calls("POST", "/v2/payments")
        assert request.headers["authorization"] == "Bearer test_platformkey123"
        assert request.headers["idempotency-key"] == f"{booking.id}:0"
        body = _body(request)
        assert body["amount"] == {"currency": "EUR", "value": "25.00"}
        assert body["redirectUrl"] == (
            f"https://app.bookbeauty.test/payment-result?bookingId={booking.id}"
        )
        assert body["webhookUrl"] == "https://api.bookbeauty.test/api/v1/webhooks/mollie"
        assert body["metadata"]["bookingId"] == booking.id
        assert "profileId" not in body

        assert booking.amount_cents == 2500
        assert booking.payment_detail.mode == "platform_only"
        assert booking.payment_detail.booking_status_before == "confirmed"

    def test_open_payment_is_reused(self, payment_service, salon, booking, fake_mollie):
        first = payment_service.create_payment(salon["customer"], booking.id)
        second = payment_service.create_payment(salon["customer"], booking.id)

        assert second["reused"] is True
        assert second["payment_id"] == first["payment_id"]
        assert second["checkout_url"] == first["checkout_url"]
        assert len(fake_mollie.calls("POST", "/v2/payments")) == 1
        assert len(fake_mollie.calls("GET", "/v2/payments/")) == 1

    def test_expired_payment_starts_a_new_cycle(self, payment_service, salon, booking, fake_mollie):
        first = payment_service.create_payment(salon["customer"], booking.id)
        fake_mollie.set_status(first["payment_id"], "expired")

        second = payment_service.create_payment(salon["customer"], booking.id)

        assert second["reused"] is False
        assert second["payment_id"] != first["payment_id"]
        keys = [r.headers["idempotency-key"] for r in fake_mollie.calls("POST", "/v2/payments")]
        assert keys == [f"{booking.id}:0", f"{booking.id}:1"]
        assert booking.payment_detail.payment_cycle == 1
        assert booking.status == "confirmed"
        assert booking.payment_status == "pending_payment"

    def test_requested_amount_is_used_without_price(self, payment_service, salon, booking, unit_db):
        booking.service_price = None
        unit_db.commit()

        result = payment_service.create_payment(salon["customer"], booking.id, amount_cents=1500)

        assert result["amount_cents"] == 1500
        assert result["platform_fee_cents"] == 120

    def test_missing_amount_is_invalid(self, payment_service, salon, booking, unit_db):
        booking.service_price = None
        unit_db.commit()

        with pytest.raises(ValidationException) as exc:
            payment_service.create_payment(salon["customer"], booking.id)

        assert exc.value.code == "InvalidAmount"

    def test_paid_and_closed_bookings_are_rejected(self, payment_service, salon, unit_db):
        paid = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            status="paid", payment_status="paid", payment_id="tr_done",
        )
        closed = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            status="declined", start_minutes=720,
        )

        with pytest.raises(AlreadyPaidException):
            payment_service.create_payment(salon["customer"], paid.id)
        with pytest.raises(ConflictException) as exc:
            payment_service.create_payment(salon["customer"], closed.id)
        assert exc.value.code == "BookingClosed"

    def test_other_customer_is_forbidden(self, payment_service, salon, booking):
        with pytest.raises(ForbiddenException):
            payment_service.create_payment(salon["other"], booking.id)

    def test_missing_platform_key_is_not_configured(self, unit_db, salon, booking, test_config, fake_mollie):
        config = test_config.model_copy(update={"mollie_api_key_platform": SecretStr("")})
        service = PaymentService(
            unit_db,
            config=config,
            client_factory=MollieClientFactory(config, transport=fake_mollie.transport),
        )

        with pytest.raises(ServiceException) as exc:
            service.create_payment(salon["customer"], booking.id)

        assert exc.value.code == "NotConfigured"
        assert fake_mollie.requests == []

    def test_provider_error_is_recorded_and_raised(self, payment_service, salon, booking, fake_mollie):
        fake_mollie.failures["/v2/payments"] = 422

        with pytest.raises(UpstreamFailureException) as exc:
            payment_service.create_payment(salon["customer"], booking.id)

        assert "422" in exc.value.message
        assert "422" in booking.payment_detail.last_error
        assert booking.payment_detail.payment_id is None


class TestConnectedPayments:
    @pytest.fixture
    def live_service(self, unit_db, live_config, fake_mollie, clock):
        factory = MollieClientFactory(live_config, transport=fake_mollie.transport)
        return PaymentService(unit_db, config=live_config, client_factory=factory, now_provider=clock)

    def test_live_payment_uses_salon_token_and_profile(
        self, live_service, unit_db, live_config, salon, booking, fake_mollie
    ):
        link_account(unit_db, live_config)

        result = live_service.create_payment(salon["customer"], booking.id)

        (request,) = fake_mollie.calls("POST", "/v2/payments")
        assert request.headers["authorization"] == "Bearer access_live"
        assert _body(request)["profileId"] == "pfl_123"
        assert booking.payment_detail.mode == "connected"
        assert booking.payment_detail.organization_id == "org_123"
        assert result["status"] == "pending_payment"

    def test_live_sync_omits_testmode_flag(
        self, live_service, unit_db, live_config, salon, booking, fake_mollie
    ):
        link_account(unit_db, live_config)
        result = live_service.create_payment(salon["customer"], booking.id)
        fake_mollie.set_status(result["payment_id"], "paid")

        live_service.sync_payment(payment_id=result["payment_id"])

        (request,) = fake_mollie.calls("GET", "/v2/payments/")
        assert "testmode" not in request.url.params
        assert booking.payment_status == "paid"

    def test_unlinked_salon_cannot_take_live_payments(self, live_service, salon, booking):
        with pytest.raises(MerchantNotLinkedException):
            live_service.create_payment(salon["customer"], booking.id)


class TestWebhook:
    def test_paid_webhook_marks_booking_paid_once(self, payment_service, salon, booking, fake_mollie):
        payment_id = payment_service.create_payment(salon["customer"], booking.id)["payment_id"]
        fake_mollie.set_status(payment_id, "paid")

        first = payment_service.handle_webhook(payment_id)
        second = payment_service.handle_webhook(payment_id)

        assert first["received"] is True
        assert first["changed"] is True
        assert first["payment_status"] == "paid"
        assert first["previous_payment_status"] == "pending_payment"
        assert second["changed"] is False
        assert booking.status == "paid"
        assert booking.payment_status == "paid"
        assert booking.payment_detail.webhook_count == 1
        assert booking.payment_detail.paid_at is not None

    def test_expired_payment_fails_booking(self, payment_service, salon, unit_db, fake_mollie):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            payment_status="pending_payment", payment_id="tr_exp", provider_status="open",
        )
        fake_mollie.add_payment("tr_exp", status="expired", booking_id=booking.id)

        result = payment_service.handle_webhook("tr_exp")

        assert result["changed"] is True
        assert result["mollie_status"] == "expired"
        assert booking.status == "failed"
        assert booking.payment_status == "failed"

    def test_metadata_for_another_booking_is_skipped(self, payment_service, salon, unit_db, fake_mollie):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            payment_status="pending_payment", payment_id="tr_mix", provider_status="open",
        )
        fake_mollie.add_payment("tr_mix", status="paid", booking_id="someone_else")

        result = payment_service.handle_webhook("tr_mix")

        assert result["skipped"] == "booking_mismatch"
        assert result["changed"] is False
        assert booking.payment_status == "pending_payment"
        assert booking.status == "confirmed"

    def test_settled_payment_is_not_moved_back(self, payment_service, salon, unit_db, fake_mollie):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            status="paid", payment_status="paid", payment_id="tr_set", provider_status="paid",
        )
        fake_mollie.add_payment("tr_set", status="failed", booking_id=booking.id)

        result = payment_service.handle_webhook("tr_set")

        assert result["skipped"] == "settled"
        assert booking.payment_status == "paid"

    @pytest.mark.parametrize("terminal, provider_status", [("failed", "expired"), ("canceled", "canceled")])
    def test_late_open_report_does_not_reopen_terminal_payment(
        self, payment_service, salon, unit_db, terminal, provider_status
    ):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            status="failed", payment_status=terminal, payment_id="tr_x", provider_status=provider_status,
        )

        result = payment_service.apply_provider_status(booking.id, "tr_x", {"status": "open"}, "webhook")

        assert result["skipped"] == "terminal"
        assert result["changed"] is False
        assert booking.payment_status == terminal
        assert booking.payment_detail.provider_status == provider_status
        assert booking.payment_detail.webhook_count == 0

    def test_unknown_and_missing_payment_ids(self, payment_service, salon):
        unknown = payment_service.handle_webhook("tr_nobody")
        missing = payment_service.handle_webhook("  ")

        assert unknown["received"] is True
        assert unknown["skipped"] == "booking_not_found"
        assert missing == {"received": True, "skipped": "missing_payment_id"}

    def test_provider_failure_is_reported_not_raised(self, payment_service, salon, unit_db, fake_mollie):
        make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            payment_status="pending_payment", payment_id="tr_err",
        )
        fake_mollie.failures["/v2/payments/tr_err"] = 500

        result = payment_service.handle_webhook("tr_err")

        assert result["received"] is True
        assert result["payment_id"] == "tr_err"
        assert "500" in result["processing_error"]


class TestSync:
    def test_sync_by_booking_id_records_manual_sync(self, payment_service, salon, booking, fake_mollie):
        payment_id = payment_service.create_payment(salon["customer"], booking.id)["payment_id"]
        fake_mollie.set_status(payment_id, "canceled")

        result = payment_service.sync_payment(booking_id=booking.id)

        assert result["booking_id"] == booking.id
        assert result["payment_status"] == "canceled"
        assert booking.status == "failed"
        assert booking.payment_detail.last_synced_at is not None
        assert booking.payment_detail.webhook_count == 0

    def test_sync_without_payment_is_rejected(self, payment_service, booking):
        with pytest.raises(ValidationException) as exc:
            payment_service.sync_payment(booking_id=booking.id)

        assert exc.value.code == "NoPayment"

    def test_sync_provider_error_is_upstream_failure(self, payment_service, salon, unit_db, fake_mollie):
        make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            payment_status="pending_payment", payment_id="tr_down",
        )
        fake_mollie.failures["/v2/payments/tr_down"] = 503

        with pytest.raises(UpstreamFailureException):
            payment_service.sync_payment(payment_id="tr_down")


class TestCancelAndRefund:
    @pytest.fixture
    def paid_booking(self, unit_db, salon, fake_mollie):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            status="paid", payment_status="paid", amount_cents=10000,
            payment_id="tr_paid", provider_status="paid",
        )
        fake_mollie.add_payment("tr_paid", status="paid", booking_id=booking.id, amount_value="100.00")
        return booking

    def test_late_cancellation_refunds_after_hold(
        self, payment_service, salon, paid_booking, fake_mollie, unit_db
    ):
        result = payment_service.cancel_and_refund(
            salon["customer"], paid_booking.id, "late", reason="  sick  "
        )

        assert result == {
            "booking_id": paid_booking.id,
            "already_refunded": False,
            "mollie_refund_id": fake_mollie.refunds[0]["id"],
            "status": "cancelled",
            "payment_status": "refunded",
            "cancel_type": "late",
            "total_cents": 10000,
            "hold_cents": 1500,
            "platform_kept_cents": 120,
            "company_kept_cents": 1380,
            "refunded_cents": 8500,
        }
        (request,) = fake_mollie.calls("POST", "/v2/payments/tr_paid/refunds")
        assert request.headers["idempotency-key"] == f"{paid_booking.id}:refund"
        body = _body(request)
        assert body["amount"] == {"currency": "EUR", "value": "85.00"}
        assert body["description"] == "Late cancellation refund (85.00 EUR)"
        assert body["metadata"]["holdCents"] == "1500"
        assert body["metadata"]["cancelReason"] == "sick"

        cancellation = paid_booking.cancellation_detail
        assert cancellation.cancel_type == "late"
        assert cancellation.reason == "sick"
        assert cancellation.requested_by == "customer"
        assert cancellation.legacy_status == "cancelled_with_fee"
        assert cancellation.hold_percent == 15
        assert cancellation.late_window_hours == 24
        assert paid_booking.payment_detail.refund_amount_cents == 8500
        assert paid_booking.cancelled_by_id == "cust_1"

        notification = (
            unit_db.query(Notification)
            .filter_by(booking_id=paid_booking.id, type="booking_cancelled")
            .one()
        )
        assert notification.recipient_id == "owner_1"

    def test_normal_cancellation_refunds_everything(self, payment_service, salon, paid_booking, fake_mollie):
        result = payment_service.cancel_and_refund(salon["customer"], paid_booking.id)

        assert result["status"] == "refunded"
        assert result["refunded_cents"] == 10000
        assert result["hold_cents"] == 0
        assert fake_mollie.refunds[0]["description"] == "Cancellation refund (100.00 EUR)"

    def test_repeat_request_reports_existing_refund(self, payment_service, salon, paid_booking, fake_mollie):
        first = payment_service.cancel_and_refund(salon["customer"], paid_booking.id, "late")
        second = payment_service.cancel_and_refund(salon["customer"], paid_booking.id, "late")

        assert second == {
            "booking_id": paid_booking.id,
            "already_refunded": True,
            "mollie_refund_id": first["mollie_refund_id"],
            "status": "cancelled",
        }
        assert len(fake_mollie.refunds) == 1

    def test_full_hold_is_a_zero_refund(self, payment_service, salon, paid_booking, unit_db):
        salon["company"].cancellation_policy = {"hold_percent": 100, "platform_fee_percent_rule": 8}
        unit_db.commit()

        with pytest.raises(ValidationException) as exc:
            payment_service.cancel_and_refund(salon["customer"], paid_booking.id, "late")

        assert exc.value.code == "ZeroRefund"
        assert paid_booking.payment_status == "paid"

    def test_salon_cancellation_notifies_customer(self, payment_service, salon, paid_booking, unit_db):
        payment_service.cancel_and_refund(
            salon["owner"], paid_booking.id, "normal", requested_by="company"
        )

        notification = unit_db.query(Notification).filter_by(booking_id=paid_booking.id).one()
        assert notification.recipient_id == "cust_1"
        assert notification.recipient_role == "customer"
        assert paid_booking.cancellation_detail.requested_by == "company"

    def test_unpaid_booking_is_cancelled_without_provider_call(
        self, payment_service, salon, booking, fake_mollie, unit_db
    ):
        unit_db.add(
            BookingSlotLock(
                id="co_1_2026-03-03_0_600",
                company_id="co_1",
                booking_id=booking.id,
                lock_date=booking.booking_date,
                seat=0,
                minute=600,
            )
        )
        unit_db.commit()

        result = payment_service.cancel_and_refund(salon["customer"], booking.id, "late")

        assert result["settled_without_payment"] is True
        assert result["status"] == "cancelled_by_customer"
        assert result["mollie_refund_id"] is None
        assert result["total_cents"] == 0
        assert result["refunded_cents"] == 0
        assert fake_mollie.requests == []
        assert booking.cancellation_detail.total_cents == 0
        assert unit_db.query(BookingSlotLock).count() == 0

    def test_open_payment_is_canceled_with_the_booking(
        self, payment_service, salon, unit_db, fake_mollie, caplog
    ):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            payment_status="pending_payment", payment_id="tr_open", provider_status="open",
        )
        fake_mollie.add_payment("tr_open", status="open", booking_id=booking.id)

        with caplog.at_level(logging.WARNING, logger="PaymentService"):
            result = payment_service.cancel_and_refund(salon["customer"], booking.id)

        assert result["payment_status"] == "canceled"
        assert booking.status == "cancelled_by_customer"
        assert fake_mollie.refunds == []
        warning = next(r for r in caplog.records if r.message.startswith("Open payment canceled locally"))
        assert warning.payment_id == "tr_open"
        assert "/api/v1/payments/sync" in warning.message

    def test_payment_completed_before_cancel_is_refunded(
        self, payment_service, salon, unit_db, fake_mollie
    ):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"],
            payment_status="pending_payment", payment_id="tr_late", provider_status="open",
            amount_cents=2500,
        )
        fake_mollie.add_payment("tr_late", status="paid", booking_id=booking.id)

        result = payment_service.cancel_and_refund(salon["customer"], booking.id)

        assert result["payment_status"] == "refunded"
        assert result["refunded_cents"] == 2500
        assert len(fake_mollie.refunds) == 1

    def test_already_closed_unpaid_booking_conflicts(self, payment_service, salon, unit_db):
        booking = make_booking(
            unit_db, salon["company"], salon["service"], salon["customer"], status="declined"
        )

        with pytest.raises(ConflictException) as exc:
            payment_service.cancel_and_refund(salon["customer"], booking.id)

        assert exc.value.code == "BookingClosed"


def test_payments_health_reports_configuration(payment_service):
    assert payment_service.payments_health() == {
        "mode": "test",
        "platform_key_configured": True,
        "webhook_url_configured": True,
        "app_base_url_configured": True,
        "oauth_configured": True,
        "token_encryption_enabled": True,
    }
