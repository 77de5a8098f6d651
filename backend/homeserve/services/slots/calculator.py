# backend/homeserve/services/slots/calculator.py
"""
Slot window generation.

Produces the ordered candidate windows of one day from a resolved SlotRule:

    cursor = start
    while cursor + duration <= end:
        emit [cursor, cursor + duration)
        cursor += duration + gap

Windows are keyed by their start minute. The display label ("09:00 AM") is
derived from that key and stored verbatim on bookings, so its format must
stay stable.

Contains:
✓ operating hours, slot duration, gap (from the rule)

Does NOT contain:
✗ Bookings (CapacityCounter)
✗ Blackouts (BlackoutRegistry)
✗ "now" (AvailabilityResolver)
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ...errors import ValidationError
from .config import SlotRule, minutes_to_time_str, time_str_to_minutes

_LABEL_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])?\s*$")


@dataclass(frozen=True)
class SlotWindow:
    """A candidate window on a given date."""
    date: date
    start_minute: int
    duration_minutes: int

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    @property
    def label(self) -> str:
        return format_slot_label(self.start_minute)

    @property
    def time_24h(self) -> str:
        return minutes_to_time_str(self.start_minute)

    @property
    def end_time_24h(self) -> str:
        return minutes_to_time_str(self.end_minute)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, datetime.min.time()) + timedelta(minutes=self.start_minute)


def generate_windows(rule: SlotRule, target_date: date) -> list[SlotWindow]:
    """
    Generate the windows of target_date for a rule.

    Returns:
        Ordered list of SlotWindow. Empty list for a non-positive duration
        or when start >= end.
    """
    duration = rule.slot_duration_minutes
    if duration is None or duration <= 0:
        return []

    start_min = time_str_to_minutes(rule.start_time)
    end_min = time_str_to_minutes(rule.end_time)
    if start_min >= end_min:
        return []

    step = duration + max(rule.gap_between_slots_minutes or 0, 0)

    windows: list[SlotWindow] = []
    t = start_min
    while t + duration <= end_min:
        windows.append(SlotWindow(date=target_date, start_minute=t, duration_minutes=duration))
        t += step

    return windows


# ── Labels ───────────────────────────────────────────────────────────────


def format_slot_label(minutes: int) -> str:
    """Minutes since midnight → "hh:MM AM"."""
    hours, mins = divmod(minutes, 60)
    period = "PM" if hours >= 12 else "AM"
    hours12 = hours % 12 or 12
    return f"{hours12:02d}:{mins:02d} {period}"


def parse_slot_time(value: str | int) -> int:
    """
    Parse a slot label back into its start minute.

    Accepts "09:00 AM", "9:00 am" and 24h "09:00". Integers are taken as
    minutes already.
    """
    if isinstance(value, int):
        return value

    match = _LABEL_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time slot '{value}'")

    hours, minutes, period = int(match.group(1)), int(match.group(2)), match.group(3)
    if minutes >= 60:
        raise ValidationError(f"Invalid time slot '{value}'")

    if period:
        if not 1 <= hours <= 12:
            raise ValidationError(f"Invalid time slot '{value}'")
        hours = hours % 12
        if period.upper() == "PM":
            hours += 12
    elif hours > 23:
        raise ValidationError(f"Invalid time slot '{value}'")

    return hours * 60 + minutes
