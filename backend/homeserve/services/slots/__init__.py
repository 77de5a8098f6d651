# backend/homeserve/services/slots/__init__.py
"""
Slots module.

Rules (slot_configs) → windows → live capacity → availability.
Booking counts are read fresh on every call.
"""

from .config import (
    BookingConfig,
    SlotRule,
    get_booking_config,
    get_effective_rule,
    load_slot_rules,
    resolve_config,
)
from .calculator import SlotWindow, format_slot_label, generate_windows, parse_slot_time
from .blackouts import find_blackout, is_blacked_out
from .capacity import RELEASED_STATUSES, count_occupied, count_occupied_by_slot, lock_slot
from .availability import (
    DayAvailability,
    Slot,
    SlotCheck,
    check_slot,
    evaluate_slot,
    get_available_slots,
    get_available_slots_range,
    is_slot_available,
)

__all__ = [
    "BookingConfig",
    "SlotRule",
    "get_booking_config",
    "get_effective_rule",
    "load_slot_rules",
    "resolve_config",
    "SlotWindow",
    "format_slot_label",
    "generate_windows",
    "parse_slot_time",
    "find_blackout",
    "is_blacked_out",
    "RELEASED_STATUSES",
    "count_occupied",
    "count_occupied_by_slot",
    "lock_slot",
    "DayAvailability",
    "Slot",
    "SlotCheck",
    "check_slot",
    "evaluate_slot",
    "get_available_slots",
    "get_available_slots_range",
    "is_slot_available",
]
