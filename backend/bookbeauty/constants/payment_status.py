"""Shared payment status mapping helpers."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    """Booking payment state as stored on the booking."""

    UNSET = ""
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


TERMINAL_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.PAID.value,
        PaymentStatus.FAILED.value,
        PaymentStatus.CANCELED.value,
        PaymentStatus.REFUNDED.value,
    }
)

# Statuses after which the amount and payment fields are frozen.
SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value})

# Provider statuses that still accept a customer payment.
OPEN_PROVIDER_STATUSES = frozenset({"open", "pending", "authorized"})

MOLLIE_TO_PAYMENT_STATUS = {
    "paid": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "expired": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELED,
    "cancelled": PaymentStatus.CANCELED,
    "authorized": PaymentStatus.PENDING_PAYMENT,
    "pending": PaymentStatus.PENDING_PAYMENT,
    "open": PaymentStatus.PENDING_PAYMENT,
}


def normalize_provider_status(raw: Optional[str]) -> str:
    """Lower-case provider status with the British spelling folded in."""
    value = (raw or "").strip().lower()
    if value == "cancelled":
        return "canceled"
    return value


def map_mollie_status(mollie_status: Optional[str]) -> str:
    """Map a Mollie payment status to the booking payment status vocabulary."""
    mapped = MOLLIE_TO_PAYMENT_STATUS.get(normalize_provider_status(mollie_status))
    if mapped is None:
        return PaymentStatus.PENDING_PAYMENT.value
    return mapped.value


def is_terminal(payment_status: Optional[str]) -> bool:
    return (payment_status or "") in TERMINAL_PAYMENT_STATUSES
