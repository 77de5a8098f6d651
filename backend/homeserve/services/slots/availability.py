# backend/homeserve/services/slots/availability.py
"""
Slot availability for a service on a day.

Combines:
- Slot rule (SlotConfigStore, resolved per request)
- Blackout dates
- Generated windows
- Fresh booking counts (CapacityCounter)
- "now" (same-day slots that already started are closed)

get_available_slots() and check_slot() both go through evaluate_slot(), so
the day view and the single-slot check cannot disagree.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from ...errors import ValidationError
from .blackouts import find_blackout
from .calculator import SlotWindow, generate_windows, parse_slot_time
from .capacity import count_occupied, count_occupied_by_slot
from .config import BookingConfig, SlotRule, get_booking_config, get_effective_rule

REASON_BLACKOUT = "blackout"
REASON_PAST = "past"
REASON_FULL = "full"
REASON_UNKNOWN = "unknown_slot"


@dataclass(frozen=True)
class Slot:
    """A generated window with its live capacity; never cached."""
    date: date
    start_minute: int
    duration_minutes: int
    label: str
    time_24h: str
    end_time_24h: str
    capacity_used: int
    capacity_max: int
    is_available: bool
    unavailable_reason: str | None = None


@dataclass(frozen=True)
class DayAvailability:
    date: date
    service_id: str | None
    provider_id: str | None
    rule: SlotRule
    slots: list[Slot] = field(default_factory=list)
    is_blackout: bool = False
    blackout_reason: str | None = None


@dataclass(frozen=True)
class SlotCheck:
    date: date
    start_minute: int
    label: str
    is_available: bool
    reason: str | None
    capacity_used: int
    capacity_max: int
    rule: SlotRule | None = None


def evaluate_slot(
    window: SlotWindow,
    capacity_used: int,
    capacity_max: int,
    blacked_out: bool,
    now: datetime,
    config: BookingConfig,
) -> tuple[bool, str | None]:
    """The one "is this slot open" predicate."""
    if blacked_out:
        return False, REASON_BLACKOUT
    if window.starts_at <= now + timedelta(minutes=config.min_advance_minutes):
        return False, REASON_PAST
    if capacity_used >= capacity_max:
        return False, REASON_FULL
    return True, None


def get_available_slots(
    db: Session,
    target_date: date,
    service_id: str | None = None,
    provider_id: str | None = None,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> DayAvailability:
    """
    All windows of a day with their availability.

    A blacked-out day still lists its windows, all closed with reason
    "blackout", so clients can render the day as closed.
    """
    config = config or get_booking_config()
    now = now or datetime.now()

    if target_date < now.date():
        raise ValidationError("Cannot fetch slots for past dates")

    blackout = find_blackout(db, service_id, target_date)
    rule = get_effective_rule(db, service_id, target_date, config)
    windows = generate_windows(rule, target_date)
    counts = count_occupied_by_slot(db, target_date, service_id, provider_id)

    slots = []
    for window in windows:
        used = counts.get(window.start_minute, 0)
        is_available, reason = evaluate_slot(
            window, used, rule.max_bookings_per_slot, blackout is not None, now, config
        )
        slots.append(_to_slot(window, used, rule.max_bookings_per_slot, is_available, reason))

    return DayAvailability(
        date=target_date,
        service_id=service_id,
        provider_id=provider_id,
        rule=rule,
        slots=slots,
        is_blackout=blackout is not None,
        blackout_reason=blackout.reason if blackout is not None else None,
    )


def get_available_slots_range(
    db: Session,
    start_date: date,
    end_date: date,
    service_id: str | None = None,
    provider_id: str | None = None,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> list[DayAvailability]:
    """Day availability for every date in [start_date, end_date]."""
    config = config or get_booking_config()
    now = now or datetime.now()

    if end_date < start_date:
        raise ValidationError("end_date cannot be before start_date")
    if (end_date - start_date).days > config.max_range_days:
        raise ValidationError(f"Date range cannot exceed {config.max_range_days} days")

    days = []
    current = start_date
    while current <= end_date:
        days.append(get_available_slots(db, current, service_id, provider_id, now, config))
        current += timedelta(days=1)
    return days


def check_slot(
    db: Session,
    target_date: date,
    time_slot: str | int,
    service_id: str | None = None,
    provider_id: str | None = None,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> SlotCheck:
    """Availability of a single slot, with the reason when closed."""
    config = config or get_booking_config()
    now = now or datetime.now()
    start_minute = parse_slot_time(time_slot)

    rule = get_effective_rule(db, service_id, target_date, config)
    window = next(
        (w for w in generate_windows(rule, target_date) if w.start_minute == start_minute),
        None,
    )
    if window is None:
        return SlotCheck(
            date=target_date,
            start_minute=start_minute,
            label=str(time_slot),
            is_available=False,
            reason=REASON_UNKNOWN,
            capacity_used=0,
            capacity_max=rule.max_bookings_per_slot,
            rule=rule,
        )

    blacked_out = find_blackout(db, service_id, target_date) is not None
    used = count_occupied(db, target_date, start_minute, service_id, provider_id)
    is_available, reason = evaluate_slot(
        window, used, rule.max_bookings_per_slot, blacked_out, now, config
    )

    return SlotCheck(
        date=target_date,
        start_minute=start_minute,
        label=window.label,
        is_available=is_available,
        reason=reason,
        capacity_used=used,
        capacity_max=rule.max_bookings_per_slot,
        rule=rule,
    )


def is_slot_available(
    db: Session,
    target_date: date,
    time_slot: str | int,
    service_id: str | None = None,
    provider_id: str | None = None,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> bool:
    return check_slot(db, target_date, time_slot, service_id, provider_id, now, config).is_available


def _to_slot(
    window: SlotWindow,
    used: int,
    capacity: int,
    is_available: bool,
    reason: str | None,
) -> Slot:
    return Slot(
        date=window.date,
        start_minute=window.start_minute,
        duration_minutes=window.duration_minutes,
        label=window.label,
        time_24h=window.time_24h,
        end_time_24h=window.end_time_24h,
        capacity_used=used,
        capacity_max=capacity,
        is_available=is_available,
        unavailable_reason=reason,
    )
