"""Cancellation breakdown for booking refunds."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional

from ..core.constants import (
    DEFAULT_HOLD_PERCENT,
    DEFAULT_LATE_WINDOW_HOURS,
    DEFAULT_PLATFORM_FEE_PERCENT,
)
from ..models.booking import BookingStatus


class CancelType(str, Enum):
    NORMAL = "normal"
    LATE = "late"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "CancelType":
        return cls.LATE if (raw or "").strip().lower() == "late" else cls.NORMAL


PERCENT_QUANTUM = Decimal("0.01")


def normalize_percent(value: Any, fallback: Any) -> Decimal:
    """Percentage clamped to 0..100 and floored to two decimals; junk uses the fallback."""

    numeric: Optional[Decimal] = None
    if value is not None and not isinstance(value, bool):
        try:
            numeric = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            numeric = None
    if numeric is None or not numeric.is_finite():
        numeric = Decimal(str(fallback))
    floored = numeric.quantize(PERCENT_QUANTUM, rounding=ROUND_FLOOR)
    return max(Decimal("0.00"), min(Decimal("100.00"), floored))


def percent_of(cents: int, percent: Any) -> int:
    """floor(cents * percent / 100) in integer math, percent taken to hundredths."""

    basis_points = int(Decimal(str(percent)).quantize(PERCENT_QUANTUM, rounding=ROUND_FLOOR) * 100)
    return (int(cents) * basis_points) // 10000


def format_percent(percent: Any) -> str:
    """``Decimal("12.50")`` -> ``"12.5"``, ``15`` -> ``"15"``."""

    return f"{Decimal(str(percent)).normalize():f}"


@dataclass(frozen=True)
class CancellationPolicy:
    hold_percent: Decimal = Decimal(DEFAULT_HOLD_PERCENT)
    platform_fee_percent_rule: Decimal = Decimal(DEFAULT_PLATFORM_FEE_PERCENT)
    late_window_hours: int = DEFAULT_LATE_WINDOW_HOURS

    @classmethod
    def from_company(
        cls,
        raw: Optional[Mapping[str, Any]],
        *,
        default_hold_percent: Decimal | int = DEFAULT_HOLD_PERCENT,
        default_platform_fee_percent_rule: Decimal | int = DEFAULT_PLATFORM_FEE_PERCENT,
        default_late_window_hours: int = DEFAULT_LATE_WINDOW_HOURS,
    ) -> "CancellationPolicy":
        policy = raw if isinstance(raw, Mapping) else {}
        try:
            late_window = int(policy.get("late_window_hours") or default_late_window_hours)
        except (TypeError, ValueError):
            late_window = default_late_window_hours
        return cls(
            hold_percent=normalize_percent(policy.get("hold_percent"), default_hold_percent),
            platform_fee_percent_rule=normalize_percent(
                policy.get("platform_fee_percent_rule"), default_platform_fee_percent_rule
            ),
            late_window_hours=max(0, late_window),
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "hold_percent": self.hold_percent,
            "platform_fee_percent_rule": self.platform_fee_percent_rule,
            "late_window_hours": self.late_window_hours,
        }


@dataclass(frozen=True)
class CancellationBreakdown:
    cancel_type: CancelType
    total_cents: int
    hold_cents: int
    platform_kept_cents: int
    company_kept_cents: int
    refunded_cents: int
    hold_percent: Decimal
    platform_fee_percent_rule: Decimal

    @property
    def resulting_status(self) -> str:
        """Booking status after the refund: money retained means ``cancelled``."""
        if self.hold_cents > 0:
            return BookingStatus.CANCELLED.value
        return BookingStatus.REFUNDED.value

    @property
    def legacy_status(self) -> str:
        return "cancelled_with_fee" if self.hold_cents > 0 else "cancelled_by_customer"

    def to_payload(self) -> dict[str, int]:
        return {
            "total_cents": self.total_cents,
            "hold_cents": self.hold_cents,
            "platform_kept_cents": self.platform_kept_cents,
            "company_kept_cents": self.company_kept_cents,
            "refunded_cents": self.refunded_cents,
        }


class RefundPolicyEngine:
    """
    Splits a booking amount into refund and retained parts.

    A normal cancellation refunds everything. A late cancellation holds
    floor(total * hold% / 100); the platform keeps floor(hold * rule% / 100)
    of that hold and the salon keeps the rest. Percentages keep two decimals
    and every step floors in integer cents, so hold == platform + company
    and refunded + hold == total.
    """

    def compute(
        self,
        *,
        total_cents: int,
        cancel_type: CancelType | str,
        policy: CancellationPolicy,
    ) -> CancellationBreakdown:
        kind = cancel_type if isinstance(cancel_type, CancelType) else CancelType.parse(cancel_type)
        total = max(0, int(total_cents))
        hold_percent = normalize_percent(policy.hold_percent, DEFAULT_HOLD_PERCENT)
        platform_rule = normalize_percent(
            policy.platform_fee_percent_rule, DEFAULT_PLATFORM_FEE_PERCENT
        )

        hold = percent_of(total, hold_percent) if kind is CancelType.LATE else 0
        refunded = max(0, total - hold)
        platform_kept = percent_of(hold, platform_rule)
        company_kept = max(0, hold - platform_kept)

        return CancellationBreakdown(
            cancel_type=kind,
            total_cents=total,
            hold_cents=hold,
            platform_kept_cents=platform_kept,
            company_kept_cents=company_kept,
            refunded_cents=refunded,
            hold_percent=hold_percent,
            platform_fee_percent_rule=platform_rule,
        )
