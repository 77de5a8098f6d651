# backend/homeserve/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

import re
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_hhmm(v: Optional[str]) -> Optional[str]:
    if v is not None and not _HHMM.match(v):
        raise ValueError('time must be "HH:MM" (24h)')
    return v


class SlotRuleRead(BaseModel):
    """Rule a day's slots were generated from (id is None for the built-in fallback)."""
    id: Optional[int] = None
    service_id: Optional[str] = None
    day_of_week: Optional[int] = None
    start_time: str
    end_time: str
    slot_duration_minutes: int
    gap_between_slots_minutes: int
    max_bookings_per_slot: int

    model_config = {"from_attributes": True}


class SlotRead(BaseModel):
    time: str = Field(description='Label stored on bookings, e.g. "09:00 AM"')
    time_24h: str
    end_time_24h: str
    start_minute: int
    duration_minutes: int
    capacity_used: int
    capacity_max: int
    is_available: bool
    unavailable_reason: Optional[str] = None


class DayAvailabilityRead(BaseModel):
    date: date
    service_id: Optional[str] = None
    provider_id: Optional[str] = None
    is_blackout: bool = False
    blackout_reason: Optional[str] = None
    available_count: int
    slots: list[SlotRead]
    config: SlotRuleRead


class RangeAvailabilityRead(BaseModel):
    start_date: date
    end_date: date
    days: list[DayAvailabilityRead]


class SlotCheckRequest(BaseModel):
    date: date
    time_slot: str = Field(min_length=1)
    service_id: Optional[str] = None
    provider_id: Optional[str] = None


class SlotCheckRead(BaseModel):
    date: date
    time_slot: str
    is_available: bool
    reason: Optional[str] = None
    capacity_used: int
    capacity_max: int


# ── Admin: slot configs ─────────────────────────────────────────────────


class SlotConfigBase(BaseModel):
    service_id: Optional[str] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6, description="0 = Sunday … 6 = Saturday")
    start_time: str = "09:00"
    end_time: str = "18:00"
    slot_duration_minutes: int = Field(60, gt=0)
    gap_between_slots_minutes: int = Field(0, ge=0)
    max_bookings_per_slot: int = Field(5, ge=1)
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time_format(cls, v):
        return _check_hhmm(v)


class SlotConfigCreate(SlotConfigBase):
    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SlotConfigUpdate(BaseModel):
    """Partial update; only the fields sent are changed."""
    service_id: Optional[str] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    slot_duration_minutes: Optional[int] = Field(None, gt=0)
    gap_between_slots_minutes: Optional[int] = Field(None, ge=0)
    max_bookings_per_slot: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time_format(cls, v):
        return _check_hhmm(v)


class SlotConfigRead(SlotConfigBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EffectiveConfigRead(BaseModel):
    date: date
    service_id: Optional[str] = None
    day_of_week: int
    is_fallback: bool
    config: SlotRuleRead


# ── Admin: blackout dates ───────────────────────────────────────────────


class BlackoutCreate(BaseModel):
    blackout_date: date
    service_id: Optional[str] = None
    reason: Optional[str] = None


class BlackoutRead(BaseModel):
    id: int
    blackout_date: date
    service_id: Optional[str] = None
    reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
