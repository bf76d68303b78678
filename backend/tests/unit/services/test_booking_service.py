from datetime import date
from decimal import Decimal

import pytest

from bookbeauty.core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    GoneException,
    ValidationException,
)
from bookbeauty.models.booking import Booking
from bookbeauty.models.booking_slot_lock import BookingSlotLock
from bookbeauty.models.company import BookingBlock
from bookbeauty.models.notification import Notification
from bookbeauty.models.service import Service
from bookbeauty.services.booking_service import BookingService, lock_minutes

from tests.factories.booking_builders import make_booking, make_staff
from tests.utils.time import BOOKING_DATE


@pytest.fixture
def booking_service(unit_db, test_config, clock):
    return BookingService(unit_db, config=test_config, now_provider=clock)


def _locks(db, booking_id):
    return db.query(BookingSlotLock).filter(BookingSlotLock.booking_id == booking_id).all()


def _book(service, salon, start_minutes=600, **kwargs):
    return service.create_booking(
        salon["customer"],
        salon["company"].id,
        salon["service"].id,
        BOOKING_DATE,
        start_minutes,
        **kwargs,
    )


def test_lock_minutes_cover_the_occupied_window():
    assert lock_minutes(600, 660) == list(range(600, 660))
    assert lock_minutes(597, 603) == [597, 598, 599, 600, 601, 602]
    assert lock_minutes(600, 600) == [600]


def test_list_slots_for_open_day(booking_service, salon):
    slots = booking_service.list_slots(salon["company"].id, salon["service"].id, BOOKING_DATE)

    assert len(slots) == 17
    assert slots[0].label == "09:00 - 10:00"


def test_list_slots_same_day_skips_past_starts(booking_service, salon):
    # 09:00 local plus the lead time rounds up to 09:30
    slots = booking_service.list_slots(salon["company"].id, salon["service"].id, date(2026, 3, 2))

    assert slots[0].start_minutes == 570


def test_create_booking_takes_seat_locks_and_notifies_salon(booking_service, salon, unit_db):
    booking = _book(booking_service, salon, note="  first visit  ")

    assert booking.status == "pending"
    assert booking.payment_status == ""
    assert booking.customer_note == "first visit"
    assert booking.customer_name == "Chris Customer"
    locks = _locks(unit_db, booking.id)
    assert len(locks) == 60
    assert {lock.seat for lock in locks} == {0}
    assert sorted(lock.minute for lock in locks) == list(range(600, 660))

    notification = unit_db.query(Notification).filter_by(booking_id=booking.id).one()
    assert notification.recipient_id == "owner_1"
    assert notification.recipient_role == "company"
    assert notification.type == "booking_created"


def test_auto_confirm_salon_confirms_immediately(booking_service, salon, unit_db):
    salon["company"].auto_confirm = True
    unit_db.commit()

    booking = _book(booking_service, salon)

    assert booking.status == "confirmed"
    assert booking.confirmed_at is not None


def test_full_slot_rejects_second_booking(booking_service, salon, unit_db):
    _book(booking_service, salon)

    with pytest.raises(BookingConflictException) as exc:
        _book(booking_service, salon, start_minutes=630)

    assert exc.value.code == "SlotUnavailable"
    assert exc.value.details == {"remaining_capacity": 0}
    assert unit_db.query(Booking).count() == 1


def test_parallel_capacity_assigns_next_free_seat(booking_service, salon, unit_db):
    salon["company"].booking_capacity = 2
    unit_db.commit()

    first = _book(booking_service, salon)
    second = _book(booking_service, salon)

    assert {lock.seat for lock in _locks(unit_db, first.id)} == {0}
    assert {lock.seat for lock in _locks(unit_db, second.id)} == {1}
    with pytest.raises(BookingConflictException):
        _book(booking_service, salon)


def test_back_to_back_windows_off_the_five_minute_grid(booking_service, salon, unit_db):
    short = Service(
        id="svc_short", company_id="co_1", name="Trim", duration_minutes=57, price=Decimal("20.00")
    )
    buffered = Service(
        id="svc_buffered",
        company_id="co_1",
        name="Colour",
        duration_minutes=60,
        buffer_before_minutes=3,
        price=Decimal("40.00"),
    )
    unit_db.add_all([short, buffered])
    unit_db.commit()
    first = booking_service.create_booking(salon["customer"], "co_1", "svc_short", BOOKING_DATE, 540)

    slots = booking_service.list_slots("co_1", "svc_buffered", BOOKING_DATE)
    advertised = next(slot for slot in slots if slot.start_minutes == 600)
    second = booking_service.create_booking(salon["other"], "co_1", "svc_buffered", BOOKING_DATE, 600)

    assert advertised.available
    assert max(lock.minute for lock in _locks(unit_db, first.id)) == 596
    assert min(lock.minute for lock in _locks(unit_db, second.id)) == 597
    assert {lock.seat for lock in _locks(unit_db, second.id)} == {0}


def test_lock_collision_is_reported_as_conflict(booking_service, salon, unit_db, monkeypatch):
    salon["company"].booking_capacity = 2
    unit_db.commit()
    _book(booking_service, salon)
    unit_db.expunge_all()

    # Simulate a racing request that picked the same seat before the first one committed.
    monkeypatch.setattr(booking_service, "_free_seats", lambda *args, **kwargs: [0])

    with pytest.raises(BookingConflictException):
        _book(booking_service, salon)

    assert unit_db.query(Booking).count() == 1


def test_requested_units_above_capacity_is_a_conflict(booking_service, salon):
    with pytest.raises(BookingConflictException) as exc:
        _book(booking_service, salon, capacity_units=2)

    assert exc.value.details == {"total_capacity": 1}


def test_start_in_the_past_is_rejected(booking_service, salon):
    with pytest.raises(ValidationException) as exc:
        booking_service.create_booking(
            salon["customer"], "co_1", "svc_cut", date(2026, 3, 2), 8 * 60
        )

    assert exc.value.code == "StartInPast"


def test_outside_opening_hours_and_closed_days(booking_service, salon):
    with pytest.raises(BusinessRuleException) as outside:
        _book(booking_service, salon, start_minutes=17 * 60 + 30)
    with pytest.raises(BusinessRuleException) as closed:
        booking_service.create_booking(salon["customer"], "co_1", "svc_cut", date(2026, 3, 8), 600)

    assert outside.value.code == "OutsideHours"
    assert closed.value.code == "DayClosed"


def test_blocked_time_is_a_conflict(booking_service, salon, unit_db):
    unit_db.add(BookingBlock(company_id="co_1", block_date=BOOKING_DATE, start_minutes=630, end_minutes=690))
    unit_db.commit()

    with pytest.raises(BookingConflictException):
        _book(booking_service, salon)


def test_decline_releases_locks_and_frees_the_slot(booking_service, salon, unit_db):
    booking = _book(booking_service, salon)

    declined = booking_service.set_status_by_company(salon["owner"], booking.id, "declined")

    assert declined.status == "declined"
    assert _locks(unit_db, booking.id) == []
    rebooked = _book(booking_service, salon)
    assert rebooked.status == "pending"


def test_confirm_requires_manager_and_pending_status(booking_service, salon):
    booking = _book(booking_service, salon)

    with pytest.raises(ForbiddenException):
        booking_service.set_status_by_company(salon["other"], booking.id, "confirmed")

    confirmed = booking_service.set_status_by_company(salon["owner"], booking.id, "confirmed")
    assert confirmed.status == "confirmed"
    assert confirmed.confirmed_at is not None

    with pytest.raises(ConflictException) as exc:
        booking_service.set_status_by_company(salon["owner"], booking.id, "declined")
    assert exc.value.code == "InvalidTransition"

    with pytest.raises(ValidationException):
        booking_service.set_status_by_company(salon["owner"], booking.id, "paid")


def test_staff_owner_can_manage_bookings(booking_service, salon, unit_db):
    make_staff(unit_db, salon["company"], "cust_2", is_owner=True)
    booking = _book(booking_service, salon)

    confirmed = booking_service.set_status_by_company(salon["other"], booking.id, "confirmed")

    assert confirmed.status == "confirmed"


def test_customer_cancel_releases_locks(booking_service, salon, unit_db):
    booking = _book(booking_service, salon)

    cancelled = booking_service.cancel_by_customer(salon["customer"], booking.id)

    assert cancelled.status == "cancelled_by_customer"
    assert cancelled.cancelled_by_id == "cust_1"
    assert _locks(unit_db, booking.id) == []


def test_paid_booking_must_use_refund_flow(booking_service, salon, unit_db):
    booking = make_booking(
        unit_db, salon["company"], salon["service"], salon["customer"], payment_status="paid", status="paid"
    )

    with pytest.raises(ConflictException):
        booking_service.cancel_by_customer(salon["customer"], booking.id)

    confirmed = make_booking(
        unit_db,
        salon["company"],
        salon["service"],
        salon["customer"],
        start_minutes=720,
        payment_status="paid",
    )
    with pytest.raises(ConflictException) as exc:
        booking_service.cancel_by_customer(salon["customer"], confirmed.id)
    assert exc.value.code == "UseRefundFlow"


def test_other_customer_cannot_cancel(booking_service, salon):
    booking = _book(booking_service, salon)

    with pytest.raises(ForbiddenException):
        booking_service.cancel_by_customer(salon["other"], booking.id)


class TestCheckIn:
    @pytest.fixture
    def paid_booking(self, unit_db, salon):
        return make_booking(
            unit_db,
            salon["company"],
            salon["service"],
            salon["customer"],
            status="paid",
            payment_status="paid",
            payment_id="tr_paid",
        )

    def test_issue_code_requires_manager(self, booking_service, salon, paid_booking):
        with pytest.raises(ForbiddenException):
            booking_service.issue_check_in_code(salon["customer"], paid_booking.id)

        issued = booking_service.issue_check_in_code(salon["owner"], paid_booking.id)

        assert len(issued["code"]) == 6
        assert issued["code"].isdigit()
        assert issued["expires_at_ms"] > 0

    def test_confirm_with_valid_code_checks_in(self, booking_service, salon, paid_booking):
        code = booking_service.issue_check_in_code(salon["owner"], paid_booking.id)["code"]

        preview = booking_service.check_in(salon["customer"], paid_booking.id, None, "preview")
        result = booking_service.check_in(salon["customer"], paid_booking.id, code, "confirm")
        again = booking_service.check_in(salon["customer"], paid_booking.id, code, "confirm")

        assert preview["checked_in"] is False
        assert result["status"] == "checked_in"
        assert result["already_checked_in"] is False
        assert again["already_checked_in"] is True

    def test_wrong_code_is_rejected(self, booking_service, salon, paid_booking):
        booking_service.issue_check_in_code(salon["owner"], paid_booking.id)

        with pytest.raises(ValidationException) as exc:
            booking_service.check_in(salon["customer"], paid_booking.id, "not-it", "confirm")

        assert exc.value.code == "InvalidCode"

    def test_expired_code_is_gone(self, booking_service, salon, paid_booking, clock):
        code = booking_service.issue_check_in_code(salon["owner"], paid_booking.id)["code"]
        clock.advance(minutes=16)

        with pytest.raises(GoneException) as exc:
            booking_service.check_in(salon["customer"], paid_booking.id, code, "confirm")

        assert exc.value.code == "CodeExpired"

    def test_unpaid_booking_cannot_check_in(self, booking_service, salon, unit_db):
        booking = make_booking(
            unit_db,
            salon["company"],
            salon["service"],
            salon["customer"],
            payment_status="pending_payment",
            payment_id="tr_open",
        )
        code = booking_service.issue_check_in_code(salon["owner"], booking.id)["code"]

        with pytest.raises(ConflictException) as exc:
            booking_service.check_in(salon["customer"], booking.id, code, "confirm")

        assert exc.value.code == "PaymentRequired"

    def test_preview_is_limited_to_participants(self, booking_service, salon, paid_booking):
        with pytest.raises(ForbiddenException):
            booking_service.check_in(salon["other"], paid_booking.id, None, "preview")

        summary = booking_service.check_in(salon["owner"], paid_booking.id, None, "preview")
        assert summary["booking_id"] == paid_booking.id
        assert summary["booking_date"] == "2026-03-03"
