# backend/homeserve/routers/slots.py
"""
Slots API endpoints.

Availability:
    GET  /slots/available        - all slots of a day with capacity
    GET  /slots/available/range  - same, for every day of a date range
    POST /slots/check            - a single slot, with the reason when closed

Admin:
    /slots/configs    - operating-hours rules
    /slots/blackouts  - closed dates
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.slots import (
    BlackoutCreate,
    BlackoutRead,
    DayAvailabilityRead,
    EffectiveConfigRead,
    RangeAvailabilityRead,
    SlotCheckRead,
    SlotCheckRequest,
    SlotConfigCreate,
    SlotConfigRead,
    SlotConfigUpdate,
    SlotRead,
    SlotRuleRead,
)
from ..services.slots import (
    DayAvailability,
    check_slot,
    get_available_slots,
    get_available_slots_range,
    get_booking_config,
    get_effective_rule,
)
from ..services.slots import admin as slot_admin
from ..services.slots import blackouts
from ..services.slots.config import day_of_week
from .deps import get_admin_id

router = APIRouter(prefix="/slots", tags=["slots"])


def _day_view(day: DayAvailability) -> DayAvailabilityRead:
    return DayAvailabilityRead(
        date=day.date,
        service_id=day.service_id,
        provider_id=day.provider_id,
        is_blackout=day.is_blackout,
        blackout_reason=day.blackout_reason,
        available_count=sum(1 for s in day.slots if s.is_available),
        slots=[
            SlotRead(
                time=s.label,
                time_24h=s.time_24h,
                end_time_24h=s.end_time_24h,
                start_minute=s.start_minute,
                duration_minutes=s.duration_minutes,
                capacity_used=s.capacity_used,
                capacity_max=s.capacity_max,
                is_available=s.is_available,
                unavailable_reason=s.unavailable_reason,
            )
            for s in day.slots
        ],
        config=SlotRuleRead.model_validate(day.rule),
    )


# ── Availability ─────────────────────────────────────────────────────────


@router.get("/available", response_model=DayAvailabilityRead)
def get_slots_for_day(
    date: date,
    service_id: str | None = None,
    provider_id: str | None = None,
    db: Session = Depends(get_db),
):
    day = get_available_slots(db, date, service_id=service_id, provider_id=provider_id)
    return _day_view(day)


@router.get("/available/range", response_model=RangeAvailabilityRead)
def get_slots_for_range(
    start_date: date,
    end_date: date,
    service_id: str | None = None,
    provider_id: str | None = None,
    db: Session = Depends(get_db),
):
    days = get_available_slots_range(
        db, start_date, end_date, service_id=service_id, provider_id=provider_id
    )
    return RangeAvailabilityRead(
        start_date=start_date,
        end_date=end_date,
        days=[_day_view(d) for d in days],
    )


@router.post("/check", response_model=SlotCheckRead)
def check_slot_availability(data: SlotCheckRequest, db: Session = Depends(get_db)):
    result = check_slot(
        db, data.date, data.time_slot, service_id=data.service_id, provider_id=data.provider_id
    )
    return SlotCheckRead(
        date=result.date,
        time_slot=result.label,
        is_available=result.is_available,
        reason=result.reason,
        capacity_used=result.capacity_used,
        capacity_max=result.capacity_max,
    )


# ── Slot configs ─────────────────────────────────────────────────────────


@router.get("/configs", response_model=list[SlotConfigRead])
def list_configs(service_id: str | None = None, db: Session = Depends(get_db)):
    return slot_admin.list_slot_configs(db, service_id)


@router.get("/configs/effective", response_model=EffectiveConfigRead)
def get_effective_config(
    date: date = Query(..., description="Date to resolve the rule for"),
    service_id: str | None = None,
    db: Session = Depends(get_db),
):
    rule = get_effective_rule(db, service_id, date, get_booking_config())
    return EffectiveConfigRead(
        date=date,
        service_id=service_id,
        day_of_week=day_of_week(date),
        is_fallback=rule.is_fallback,
        config=SlotRuleRead.model_validate(rule),
    )


@router.post("/configs", response_model=SlotConfigRead, status_code=status.HTTP_201_CREATED)
def create_config(data: SlotConfigCreate, db: Session = Depends(get_db)):
    return slot_admin.create_slot_config(db, data.model_dump())


@router.put("/configs/{id}", response_model=SlotConfigRead)
def update_config(id: int, data: SlotConfigUpdate, db: Session = Depends(get_db)):
    return slot_admin.update_slot_config(db, id, data.model_dump(exclude_unset=True))


@router.delete("/configs/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_config(id: int, db: Session = Depends(get_db)):
    slot_admin.delete_slot_config(db, id)


# ── Blackout dates ───────────────────────────────────────────────────────


@router.get("/blackouts", response_model=list[BlackoutRead])
def list_blackouts(db: Session = Depends(get_db)):
    return blackouts.list_blackout_dates(db)


@router.get("/blackouts/upcoming", response_model=list[BlackoutRead])
def list_upcoming_blackouts(service_id: str | None = None, db: Session = Depends(get_db)):
    return blackouts.list_upcoming_blackout_dates(db, service_id=service_id, today=datetime.now().date())


@router.post("/blackouts", response_model=BlackoutRead, status_code=status.HTTP_201_CREATED)
def create_blackout(
    data: BlackoutCreate,
    admin_id: str | None = Depends(get_admin_id),
    db: Session = Depends(get_db),
):
    return blackouts.create_blackout_date(
        db,
        data.blackout_date,
        service_id=data.service_id,
        reason=data.reason,
        created_by=admin_id,
    )


@router.delete("/blackouts/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_blackout(id: int, db: Session = Depends(get_db)):
    blackouts.delete_blackout_date(db, id)
