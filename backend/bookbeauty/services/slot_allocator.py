"""
Slot computation for salon bookings.

Everything here is pure: callers load the salon settings, the day's active
bookings and blocks, and get back an ordered list of candidate slots. All
times are minutes since local midnight on the booking date; intervals are
half-open, so a window ending at 10:00 does not collide with one starting
at 10:00.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..core.constants import (
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_RANGE_END,
    DEFAULT_RANGE_START,
    MIN_SERVICE_DURATION_MINUTES,
    SAME_DAY_LEAD_MINUTES,
    VALID_INTERVALS,
    WEEKDAY_KEYS,
)
from ..core.timezone_utils import get_booking_timezone, local_start_to_utc, to_epoch_ms

_HHMM = re.compile(r"^(\d{2}):(\d{2})$")


@dataclass(frozen=True)
class TimeRange:
    start: int
    end: int

    def contains(self, start: int, end: int) -> bool:
        return start >= self.start and end <= self.end


@dataclass(frozen=True)
class DaySchedule:
    open: bool
    ranges: Tuple[TimeRange, ...] = ()


@dataclass(frozen=True)
class Reservation:
    """Occupied window of an existing booking (buffers included)."""

    start: int
    end: int
    units: int = 1


@dataclass(frozen=True)
class BookingSettings:
    enabled: bool = True
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    capacity: int = 1
    auto_confirm: bool = False
    week: Mapping[str, DaySchedule] = field(default_factory=dict)

    def day(self, booking_date: date) -> DaySchedule:
        key = WEEKDAY_KEYS[booking_date.weekday()]
        return self.week.get(key) or default_day(key)


@dataclass(frozen=True)
class ServiceShape:
    duration: int
    buffer_before: int = 0
    buffer_after: int = 0
    capacity: int = 1


@dataclass(frozen=True)
class Slot:
    key: str
    label: str
    booking_date: date
    start_minutes: int
    end_minutes: int
    remaining_capacity: int
    total_capacity: int
    start_at_ms: int = 0

    @property
    def available(self) -> bool:
        return self.remaining_capacity > 0


def format_hhmm(total_minutes: int) -> str:
    hours, minutes = divmod(int(total_minutes), 60)
    return f"{hours:02d}:{minutes:02d}"


def parse_hhmm(value: Any) -> Optional[int]:
    match = _HHMM.match(str(value or "").strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 24 or minutes > 59:
        return None
    return hours * 60 + minutes


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


def normalize_capacity(value: Any, fallback: int = 1) -> int:
    try:
        raw = int(value)
    except (TypeError, ValueError):
        return fallback
    return max(1, raw)


def normalize_non_negative(value: Any, fallback: int = 0) -> int:
    try:
        raw = int(value)
    except (TypeError, ValueError):
        return fallback
    return max(0, raw)


def normalize_interval(value: Any) -> int:
    try:
        raw = int(value)
    except (TypeError, ValueError):
        return DEFAULT_INTERVAL_MINUTES
    return raw if raw in VALID_INTERVALS else DEFAULT_INTERVAL_MINUTES


def round_to_next_interval(total_minutes: int, interval: int) -> int:
    step = max(1, interval)
    return -(-total_minutes // step) * step


def default_day(key: str) -> DaySchedule:
    default_range = TimeRange(parse_hhmm(DEFAULT_RANGE_START), parse_hhmm(DEFAULT_RANGE_END))
    return DaySchedule(open=key != "sun", ranges=(default_range,))


def _normalize_range(raw: Any) -> Optional[TimeRange]:
    node = raw if isinstance(raw, Mapping) else {}
    start = parse_hhmm(node.get("start"))
    end = parse_hhmm(node.get("end"))
    if start is None or end is None or end <= start:
        return None
    return TimeRange(start, end)


def normalize_day(raw: Any, key: str) -> DaySchedule:
    """
    Read one weekday of a stored schedule.

    Accepts ``{"closed": bool, "ranges": [...]}``, ``{"open": bool, ...}`` and
    the older single ``{"start", "end"}`` shape.
    """
    fallback = default_day(key)
    node = raw if isinstance(raw, Mapping) else {}
    if isinstance(node.get("closed"), bool):
        is_open = not node["closed"]
    elif isinstance(node.get("open"), bool):
        is_open = node["open"]
    else:
        is_open = fallback.open

    ranges = node.get("ranges")
    parsed = [r for r in (_normalize_range(item) for item in ranges or []) if r is not None]
    if parsed:
        return DaySchedule(open=is_open, ranges=tuple(sorted(parsed, key=lambda r: r.start)))

    legacy = _normalize_range(
        {
            "start": node.get("start", DEFAULT_RANGE_START),
            "end": node.get("end", DEFAULT_RANGE_END),
        }
    )
    return DaySchedule(open=is_open, ranges=(legacy,) if legacy else fallback.ranges)


def settings_from_company(company: Any) -> BookingSettings:
    raw_week = getattr(company, "week_schedule", None) or {}
    week = {key: normalize_day(raw_week.get(key), key) for key in WEEKDAY_KEYS}
    return BookingSettings(
        enabled=bool(getattr(company, "booking_enabled", True)),
        interval_minutes=normalize_interval(getattr(company, "booking_interval_minutes", None)),
        capacity=normalize_capacity(getattr(company, "booking_capacity", None), 1),
        auto_confirm=bool(getattr(company, "auto_confirm", False)),
        week=week,
    )


def service_shape(service: Any, settings: BookingSettings) -> ServiceShape:
    """Duration, buffers and effective parallel capacity for a service."""
    company_capacity = normalize_capacity(settings.capacity, 1)
    service_capacity = normalize_capacity(getattr(service, "capacity", None), company_capacity)
    return ServiceShape(
        duration=max(
            MIN_SERVICE_DURATION_MINUTES,
            normalize_non_negative(getattr(service, "duration_minutes", None), 0),
        ),
        buffer_before=normalize_non_negative(getattr(service, "buffer_before_minutes", None)),
        buffer_after=normalize_non_negative(getattr(service, "buffer_after_minutes", None)),
        capacity=max(1, min(company_capacity, service_capacity)),
    )


def occupied_window(start: int, shape: ServiceShape) -> Tuple[int, int]:
    return start - shape.buffer_before, start + shape.duration + shape.buffer_after


def fits_any_range(ranges: Sequence[TimeRange], start: int, end: int) -> bool:
    return any(r.contains(start, end) for r in ranges)


def overlaps_any(windows: Iterable[Tuple[int, int]], start: int, end: int) -> bool:
    return any(overlaps(start, end, w_start, w_end) for w_start, w_end in windows)


def reserved_units(reservations: Iterable[Reservation], start: int, end: int) -> int:
    return sum(max(0, r.units) for r in reservations if overlaps(start, end, r.start, r.end))


def earliest_start(
    booking_date: date,
    interval: int,
    today: Optional[date],
    now_minutes: Optional[int],
) -> Optional[int]:
    """First allowed start minute on ``booking_date``; None when the whole day is past."""
    if today is None or now_minutes is None:
        return 0
    if booking_date < today:
        return None
    if booking_date > today:
        return 0
    return round_to_next_interval(now_minutes + SAME_DAY_LEAD_MINUTES, interval)


def compute_slots(
    *,
    booking_date: date,
    settings: BookingSettings,
    shape: ServiceShape,
    reservations: Sequence[Reservation] = (),
    blocks: Sequence[Tuple[int, int]] = (),
    requested_units: int = 1,
    today: Optional[date] = None,
    now_minutes: Optional[int] = None,
    include_unavailable: bool = False,
    tz: Any = None,
) -> List[Slot]:
    """
    Candidate slots for one service on one salon day, in chronological order.

    A candidate is offered when its buffered window fits inside an opening
    range, touches no block, and the capacity left after overlapping
    reservations covers ``requested_units``. With ``include_unavailable``
    fully booked candidates are returned too, with ``remaining_capacity == 0``.
    """
    if not settings.enabled:
        return []
    day = settings.day(booking_date)
    if not day.open or not day.ranges:
        return []

    interval = normalize_interval(settings.interval_minutes)
    min_start = earliest_start(booking_date, interval, today, now_minutes)
    if min_start is None:
        return []

    units = max(1, int(requested_units))
    zone = tz or get_booking_timezone()
    date_key = booking_date.isoformat()
    seen: set[int] = set()
    slots: List[Slot] = []

    for time_range in day.ranges:
        cursor = max(time_range.start, min_start)
        while cursor + shape.duration <= time_range.end:
            start = cursor
            cursor += interval
            if start in seen:
                continue
            occ_start, occ_end = occupied_window(start, shape)
            if not fits_any_range(day.ranges, occ_start, occ_end):
                continue
            if overlaps_any(blocks, occ_start, occ_end):
                continue

            remaining = max(0, shape.capacity - reserved_units(reservations, occ_start, occ_end))
            if remaining < units and not include_unavailable:
                continue

            seen.add(start)
            end = start + shape.duration
            slots.append(
                Slot(
                    key=f"{date_key}-{start}",
                    label=f"{format_hhmm(start)} - {format_hhmm(end)}",
                    booking_date=booking_date,
                    start_minutes=start,
                    end_minutes=end,
                    remaining_capacity=remaining,
                    total_capacity=shape.capacity,
                    start_at_ms=to_epoch_ms(local_start_to_utc(booking_date, start, zone)),
                )
            )

    slots.sort(key=lambda slot: slot.start_minutes)
    return slots
