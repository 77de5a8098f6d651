# backend/homeserve/services/slots/config.py
"""
Booking configuration and slot-rule resolution.

Slot rules come from the slot_configs table and are layered:

    (service, day) → (service, any day) → (global, day) → (global, any day)
    → built-in fallback

Rules are read once per request into an immutable snapshot and resolved by
a pure function, so the same snapshot always yields the same rule.
"""

from dataclasses import dataclass
from datetime import date
from functools import lru_cache

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...errors import ValidationError


@dataclass(frozen=True)
class BookingConfig:
    """
    Engine-wide constants.

    Attributes:
        max_range_days: Longest span a range availability query may cover
        min_advance_minutes: Same-day slots starting within this many minutes are closed
        fallback_*: Rule used when no admin configuration matches
        full_refund_hours / half_refund_hours: Cancellation refund windows
    """
    max_range_days: int = 30
    min_advance_minutes: int = 0

    fallback_start_time: str = "09:00"
    fallback_end_time: str = "18:00"
    fallback_slot_duration_minutes: int = 60
    fallback_gap_minutes: int = 0
    fallback_max_bookings_per_slot: int = 5

    full_refund_hours: int = 24
    half_refund_hours: int = 6

    def __post_init__(self):
        if self.max_range_days < 0:
            raise ValueError(f"max_range_days must be >= 0, got {self.max_range_days}")

    @property
    def fallback_rule(self) -> "SlotRule":
        return SlotRule(
            id=None,
            service_id=None,
            day_of_week=None,
            start_time=self.fallback_start_time,
            end_time=self.fallback_end_time,
            slot_duration_minutes=self.fallback_slot_duration_minutes,
            gap_between_slots_minutes=self.fallback_gap_minutes,
            max_bookings_per_slot=self.fallback_max_bookings_per_slot,
        )


@lru_cache
def get_booking_config() -> BookingConfig:
    """Get booking configuration (singleton)."""
    return BookingConfig()


@dataclass(frozen=True)
class SlotRule:
    """Immutable view of a slot_configs row."""
    id: int | None
    service_id: str | None
    day_of_week: int | None
    start_time: str
    end_time: str
    slot_duration_minutes: int
    gap_between_slots_minutes: int
    max_bookings_per_slot: int

    @property
    def is_fallback(self) -> bool:
        return self.id is None

    @classmethod
    def from_row(cls, row) -> "SlotRule":
        return cls(
            id=row.id,
            service_id=row.service_id,
            day_of_week=row.day_of_week,
            start_time=row.start_time,
            end_time=row.end_time,
            slot_duration_minutes=row.slot_duration_minutes,
            gap_between_slots_minutes=row.gap_between_slots_minutes or 0,
            max_bookings_per_slot=row.max_bookings_per_slot,
        )


# ── Time helpers ─────────────────────────────────────────────────────────


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    try:
        hours, minutes = value.strip().split(":")
        h, m = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    if not (0 <= h <= 24 and 0 <= m < 60) or (h == 24 and m != 0):
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    return h * 60 + m


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_of_week(target_date: date) -> int:
    """Day index as stored in slot_configs: 0 = Sunday … 6 = Saturday."""
    return target_date.isoweekday() % 7


# ── Resolution ───────────────────────────────────────────────────────────


def load_slot_rules(db: Session, service_id: str | None = None) -> tuple[SlotRule, ...]:
    """
    Read active rules relevant to a service (its own rows plus global rows).

    The result is a per-request snapshot; nothing is cached across requests.
    """
    from ...models import SlotConfigs

    query = db.query(SlotConfigs).filter(SlotConfigs.is_active.is_(True))
    if service_id:
        query = query.filter(
            or_(SlotConfigs.service_id == service_id, SlotConfigs.service_id.is_(None))
        )
    else:
        query = query.filter(SlotConfigs.service_id.is_(None))

    return tuple(SlotRule.from_row(row) for row in query.order_by(SlotConfigs.id).all())


def resolve_config(
    rules: tuple[SlotRule, ...] | list[SlotRule],
    service_id: str | None,
    target_date: date,
    config: BookingConfig | None = None,
) -> SlotRule:
    """
    Pick the most specific rule for (service, date).

    Precedence:
        1. service + day of week
        2. service, any day
        3. global + day of week
        4. global, any day
        5. built-in fallback
    """
    config = config or get_booking_config()
    dow = day_of_week(target_date)

    candidates = []
    if service_id:
        candidates.append((service_id, dow))
        candidates.append((service_id, None))
    candidates.append((None, dow))
    candidates.append((None, None))

    by_key = {(rule.service_id, rule.day_of_week): rule for rule in rules}
    for key in candidates:
        rule = by_key.get(key)
        if rule is not None:
            return rule

    return config.fallback_rule


def get_effective_rule(
    db: Session,
    service_id: str | None,
    target_date: date,
    config: BookingConfig | None = None,
) -> SlotRule:
    """Load the snapshot and resolve in one call."""
    return resolve_config(load_slot_rules(db, service_id), service_id, target_date, config)
