# backend/homeserve/services/slots/admin.py
"""
Administrative management of slot_configs rows.

At most one row may exist per (service_id, day_of_week) pair, NULLs
included. Violations are conflicts, never silent merges.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import ConflictError, NotFoundError, ValidationError
from ...models import SlotConfigs
from .config import time_str_to_minutes

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "A configuration for this service/day already exists"

# service_id and day_of_week are nullable wildcards, these are not
REQUIRED_FIELDS = (
    "start_time",
    "end_time",
    "slot_duration_minutes",
    "gap_between_slots_minutes",
    "max_bookings_per_slot",
    "is_active",
)


def list_slot_configs(db: Session, service_id: str | None = None) -> list[SlotConfigs]:
    """All configs, global rows first; with service_id, that service's rows plus globals."""
    query = db.query(SlotConfigs)
    if service_id:
        query = query.filter(
            (SlotConfigs.service_id == service_id) | SlotConfigs.service_id.is_(None)
        )
    return query.order_by(
        SlotConfigs.service_id.is_not(None),
        SlotConfigs.service_id,
        SlotConfigs.day_of_week.is_not(None),
        SlotConfigs.day_of_week,
    ).all()


def get_slot_config(db: Session, config_id: int) -> SlotConfigs:
    obj = db.get(SlotConfigs, config_id)
    if not obj:
        raise NotFoundError("Configuration not found")
    return obj


def create_slot_config(db: Session, data: dict) -> SlotConfigs:
    data = dict(data)
    data["service_id"] = data.get("service_id") or None
    _reject_nulls(data)
    _validate_fields(data)
    _ensure_unique(db, data["service_id"], data.get("day_of_week"))

    obj = SlotConfigs(**data)
    db.add(obj)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_MESSAGE)
    db.refresh(obj)

    logger.info(
        f"Slot config {obj.id} created: service={obj.service_id or 'all'} "
        f"day={obj.day_of_week if obj.day_of_week is not None else 'all'} "
        f"{obj.start_time}-{obj.end_time}/{obj.slot_duration_minutes}min x{obj.max_bookings_per_slot}"
    )
    return obj


def update_slot_config(db: Session, config_id: int, updates: dict) -> SlotConfigs:
    """Partial update; only keys present in `updates` are changed."""
    _reject_nulls(updates)
    obj = get_slot_config(db, config_id)

    merged = {
        "service_id": obj.service_id,
        "day_of_week": obj.day_of_week,
        "start_time": obj.start_time,
        "end_time": obj.end_time,
        "slot_duration_minutes": obj.slot_duration_minutes,
        "gap_between_slots_minutes": obj.gap_between_slots_minutes,
        "max_bookings_per_slot": obj.max_bookings_per_slot,
        "is_active": obj.is_active,
    }
    merged.update(updates)
    if "service_id" in updates:
        merged["service_id"] = updates["service_id"] or None
    _validate_fields(merged)

    if (merged["service_id"], merged["day_of_week"]) != (obj.service_id, obj.day_of_week):
        _ensure_unique(db, merged["service_id"], merged["day_of_week"], exclude_id=obj.id)

    for key, value in merged.items():
        setattr(obj, key, value)
    obj.updated_at = datetime.now()

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_MESSAGE)
    db.refresh(obj)

    logger.info(f"Slot config {obj.id} updated: {sorted(updates)}")
    return obj


def delete_slot_config(db: Session, config_id: int) -> None:
    obj = get_slot_config(db, config_id)
    db.delete(obj)
    db.commit()
    logger.info(f"Slot config {config_id} deleted")


# ── Helpers ──────────────────────────────────────────────────────────────


def _ensure_unique(
    db: Session,
    service_id: str | None,
    day_of_week: int | None,
    exclude_id: int | None = None,
) -> None:
    query = db.query(SlotConfigs)
    if service_id is None:
        query = query.filter(SlotConfigs.service_id.is_(None))
    else:
        query = query.filter(SlotConfigs.service_id == service_id)
    if day_of_week is None:
        query = query.filter(SlotConfigs.day_of_week.is_(None))
    else:
        query = query.filter(SlotConfigs.day_of_week == day_of_week)
    if exclude_id is not None:
        query = query.filter(SlotConfigs.id != exclude_id)

    if query.first():
        raise ConflictError(DUPLICATE_MESSAGE)


def _reject_nulls(data: dict) -> None:
    for key in REQUIRED_FIELDS:
        if key in data and data[key] is None:
            raise ValidationError(f"{key} cannot be null")


def _validate_fields(data: dict) -> None:
    dow = data.get("day_of_week")
    if dow is not None and not 0 <= dow <= 6:
        raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")

    start = data.get("start_time")
    end = data.get("end_time")
    if start is not None and end is not None:
        if time_str_to_minutes(end) <= time_str_to_minutes(start):
            raise ValidationError("end_time must be after start_time")

    duration = data.get("slot_duration_minutes")
    if duration is not None and duration <= 0:
        raise ValidationError("slot_duration_minutes must be greater than 0")

    gap = data.get("gap_between_slots_minutes")
    if gap is not None and gap < 0:
        raise ValidationError("gap_between_slots_minutes cannot be negative")

    capacity = data.get("max_bookings_per_slot")
    if capacity is not None and capacity < 1:
        raise ValidationError("max_bookings_per_slot must be at least 1")
