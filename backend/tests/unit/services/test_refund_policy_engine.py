from decimal import Decimal

import pytest

from bookbeauty.services.refund_policy_engine import (
    CancellationPolicy,
    CancelType,
    RefundPolicyEngine,
    format_percent,
    normalize_percent,
    percent_of,
)


@pytest.fixture
def engine():
    return RefundPolicyEngine()


def test_late_cancellation_splits_hold_between_platform_and_salon(engine):
    breakdown = engine.compute(
        total_cents=10000,
        cancel_type="late",
        policy=CancellationPolicy(hold_percent=15, platform_fee_percent_rule=8),
    )

    assert breakdown.cancel_type is CancelType.LATE
    assert breakdown.to_payload() == {
        "total_cents": 10000,
        "hold_cents": 1500,
        "platform_kept_cents": 120,
        "company_kept_cents": 1380,
        "refunded_cents": 8500,
    }
    assert breakdown.resulting_status == "cancelled"
    assert breakdown.legacy_status == "cancelled_with_fee"


def test_normal_cancellation_refunds_everything(engine):
    breakdown = engine.compute(
        total_cents=2500, cancel_type=CancelType.NORMAL, policy=CancellationPolicy()
    )

    assert breakdown.hold_cents == 0
    assert breakdown.platform_kept_cents == 0
    assert breakdown.refunded_cents == 2500
    assert breakdown.resulting_status == "refunded"
    assert breakdown.legacy_status == "cancelled_by_customer"


@pytest.mark.parametrize("total", [0, 1, 7, 99, 101, 2599, 123457])
def test_amounts_always_add_up(engine, total):
    breakdown = engine.compute(
        total_cents=total,
        cancel_type="late",
        policy=CancellationPolicy(hold_percent=33, platform_fee_percent_rule=17),
    )

    assert breakdown.hold_cents == breakdown.platform_kept_cents + breakdown.company_kept_cents
    assert breakdown.refunded_cents + breakdown.hold_cents == total
    assert min(breakdown.to_payload().values()) >= 0


def test_fractional_cents_are_floored(engine):
    breakdown = engine.compute(
        total_cents=999,
        cancel_type="late",
        policy=CancellationPolicy(hold_percent=15, platform_fee_percent_rule=8),
    )

    assert breakdown.hold_cents == 149
    assert breakdown.platform_kept_cents == 11
    assert breakdown.company_kept_cents == 138
    assert breakdown.refunded_cents == 850


def test_unknown_cancel_type_is_normal():
    assert CancelType.parse("whatever") is CancelType.NORMAL
    assert CancelType.parse(" LATE ") is CancelType.LATE


def test_policy_from_company_clamps_and_falls_back():
    policy = CancellationPolicy.from_company(
        {"hold_percent": 150, "platform_fee_percent_rule": "abc", "late_window_hours": "x"},
        default_hold_percent=10,
        default_platform_fee_percent_rule=5,
        default_late_window_hours=12,
    )

    assert policy == CancellationPolicy(
        hold_percent=100, platform_fee_percent_rule=5, late_window_hours=12
    )
    assert CancellationPolicy.from_company(None).snapshot() == {
        "hold_percent": 15,
        "platform_fee_percent_rule": 8,
        "late_window_hours": 24,
    }


def test_normalize_percent():
    assert normalize_percent("12.9", 0) == Decimal("12.9")
    assert normalize_percent("12.345", 0) == Decimal("12.34")
    assert normalize_percent(-5, 3) == 0
    assert normalize_percent(True, 3) == 3
    assert normalize_percent(float("nan"), 4) == 4


def test_percent_of_keeps_hundredths():
    assert percent_of(10000, Decimal("12.5")) == 1250
    assert percent_of(999, Decimal("0.01")) == 0
    assert percent_of(123457, 8) == 9876
    assert format_percent(Decimal("12.50")) == "12.5"
    assert format_percent(Decimal("100.00")) == "100"


def test_fractional_hold_percent_is_not_truncated(engine):
    policy = CancellationPolicy.from_company({"hold_percent": 12.5, "platform_fee_percent_rule": 8})

    breakdown = engine.compute(total_cents=10000, cancel_type="late", policy=policy)

    assert breakdown.hold_percent == Decimal("12.5")
    assert breakdown.hold_cents == 1250
    assert breakdown.platform_kept_cents == 100
    assert breakdown.company_kept_cents == 1150
    assert breakdown.refunded_cents == 8750


@pytest.mark.parametrize("hold, rule", [("12.5", "8.25"), ("0.01", "99.99"), ("33.33", "17.5")])
@pytest.mark.parametrize("total", [1, 99, 2599, 123457])
def test_fractional_percentages_still_add_up(engine, hold, rule, total):
    breakdown = engine.compute(
        total_cents=total,
        cancel_type="late",
        policy=CancellationPolicy(hold_percent=Decimal(hold), platform_fee_percent_rule=Decimal(rule)),
    )

    assert breakdown.hold_cents == breakdown.platform_kept_cents + breakdown.company_kept_cents
    assert breakdown.refunded_cents + breakdown.hold_cents == total
    assert min(breakdown.to_payload().values()) >= 0
