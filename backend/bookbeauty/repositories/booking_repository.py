# backend/bookbeauty/repositories/booking_repository.py
"""
Booking Repository for BookBeauty

Data access for bookings and their satellites (payment, cancellation,
slot locks) plus the salon blocks used by slot computation. Queries that
feed slot computation are always scoped to one company and one date.
"""

from dataclasses import dataclass
from datetime import date
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking
from ..models.booking_cancellation import BookingCancellation
from ..models.booking_payment import BookingPayment
from ..models.booking_slot_lock import BookingSlotLock
from ..models.company import BookingBlock
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIdLookup:
    """One place a booking's provider payment id may be stored."""

    name: str
    find: Callable[[Session, str], Optional[Booking]]


def _by_payment_detail(db: Session, payment_id: str) -> Optional[Booking]:
    return (
        db.query(Booking)
        .join(BookingPayment, BookingPayment.booking_id == Booking.id)
        .filter(BookingPayment.payment_id == payment_id)
        .first()
    )


def _by_legacy_column(db: Session, payment_id: str) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.mollie_payment_id == payment_id).first()


# Tried in order; the first match wins. The satellite column is where every
# current write goes, the top-level column only exists on older bookings.
PAYMENT_ID_LOOKUPS: Sequence[PaymentIdLookup] = (
    PaymentIdLookup("booking_payments.payment_id", _by_payment_detail),
    PaymentIdLookup("bookings.mollie_payment_id", _by_legacy_column),
)


class BookingRepository(BaseRepository[Booking]):
    """Repository for bookings and their payment/cancellation detail rows."""

    def __init__(
        self,
        db: Session,
        payment_lookups: Sequence[PaymentIdLookup] = PAYMENT_ID_LOOKUPS,
    ):
        super().__init__(db, Booking)
        self.payment_lookups = payment_lookups

    def get_by_id(self, booking_id: str, for_update: bool = False) -> Optional[Booking]:
        try:
            query = (
                self.db.query(Booking)
                .options(
                    joinedload(Booking.payment_detail),
                    joinedload(Booking.cancellation_detail),
                )
                .filter(Booking.id == booking_id)
            )
            if for_update:
                # Lock only the booking row; outer joins cannot be locked on Postgres.
                query = query.with_for_update(of=Booking)
            return query.first()
        except SQLAlchemyError as exc:
            self.logger.error("Error getting booking %s: %s", booking_id, exc)
            raise RepositoryException(f"Failed to retrieve booking: {exc}") from exc

    def find_by_payment_id(self, payment_id: str) -> Optional[Booking]:
        """Locate a booking by provider payment id across all known storage locations."""
        if not payment_id:
            return None
        for lookup in self.payment_lookups:
            booking = lookup.find(self.db, payment_id)
            if booking is not None:
                if lookup is not self.payment_lookups[0]:
                    logger.info(
                        "Booking matched payment via fallback location",
                        extra={"payment_id": payment_id, "lookup": lookup.name},
                    )
                return booking
        return None

    def list_active_for_company_date(
        self,
        company_id: str,
        booking_date: date,
        statuses: Iterable[str] = ACTIVE_BOOKING_STATUSES,
    ) -> List[Booking]:
        """Bookings that occupy capacity on one salon day."""
        return (
            self.db.query(Booking)
            .filter(
                Booking.company_id == company_id,
                Booking.booking_date == booking_date,
                Booking.status.in_(list(statuses)),
            )
            .order_by(Booking.start_minutes.asc())
            .all()
        )

    def list_for_company_status(self, company_id: str, status: str) -> List[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.company_id == company_id, Booking.status == status)
            .order_by(Booking.booking_date.asc(), Booking.start_minutes.asc())
            .all()
        )

    def list_blocks(self, company_id: str, booking_date: date) -> List[BookingBlock]:
        return (
            self.db.query(BookingBlock)
            .filter(BookingBlock.company_id == company_id, BookingBlock.block_date == booking_date)
            .all()
        )

    # Satellites

    def ensure_payment_detail(self, booking: Booking) -> BookingPayment:
        """Return the booking's payment row, creating it when missing."""
        if booking.payment_detail is None:
            detail = BookingPayment(booking_id=booking.id)
            self.db.add(detail)
            booking.payment_detail = detail
            self.db.flush()
        return booking.payment_detail

    def ensure_cancellation_detail(self, booking: Booking, **values) -> BookingCancellation:
        detail = booking.cancellation_detail
        if detail is None:
            detail = BookingCancellation(booking_id=booking.id, **values)
            self.db.add(detail)
            booking.cancellation_detail = detail
        else:
            for key, value in values.items():
                setattr(detail, key, value)
        self.db.flush()
        return detail

    # Slot locks

    def get_slot_lock_ids(self, lock_ids: Iterable[str]) -> Set[str]:
        ids = list(lock_ids)
        if not ids:
            return set()
        rows = self.db.query(BookingSlotLock.id).filter(BookingSlotLock.id.in_(ids)).all()
        return {row[0] for row in rows}

    def add_slot_locks(self, locks: Iterable[BookingSlotLock]) -> None:
        self.db.add_all(list(locks))
        self.db.flush()

    def release_slot_locks(self, booking_id: str) -> int:
        released = (
            self.db.query(BookingSlotLock)
            .filter(BookingSlotLock.booking_id == booking_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return int(released or 0)
