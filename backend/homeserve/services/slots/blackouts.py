# backend/homeserve/services/slots/blackouts.py
"""
Blackout dates: days on which a service (or every service) cannot be booked.
"""

import logging
from datetime import date

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import ConflictError, NotFoundError
from ...models import SlotBlackoutDates

logger = logging.getLogger(__name__)


def find_blackout(
    db: Session,
    service_id: str | None,
    target_date: date,
) -> SlotBlackoutDates | None:
    """Service-specific or global blackout row for target_date, if any."""
    query = db.query(SlotBlackoutDates).filter(SlotBlackoutDates.blackout_date == target_date)
    if service_id:
        query = query.filter(
            or_(SlotBlackoutDates.service_id == service_id, SlotBlackoutDates.service_id.is_(None))
        )
    else:
        query = query.filter(SlotBlackoutDates.service_id.is_(None))

    # service-specific row first so its reason wins
    return query.order_by(SlotBlackoutDates.service_id.is_(None)).first()


def is_blacked_out(db: Session, service_id: str | None, target_date: date) -> bool:
    return find_blackout(db, service_id, target_date) is not None


# ── Admin ────────────────────────────────────────────────────────────────


def list_blackout_dates(db: Session) -> list[SlotBlackoutDates]:
    return (
        db.query(SlotBlackoutDates)
        .order_by(SlotBlackoutDates.blackout_date.desc(), SlotBlackoutDates.id)
        .all()
    )


def list_upcoming_blackout_dates(
    db: Session,
    service_id: str | None = None,
    today: date | None = None,
) -> list[SlotBlackoutDates]:
    today = today or date.today()
    query = db.query(SlotBlackoutDates).filter(SlotBlackoutDates.blackout_date >= today)
    if service_id:
        query = query.filter(
            or_(SlotBlackoutDates.service_id == service_id, SlotBlackoutDates.service_id.is_(None))
        )
    return query.order_by(SlotBlackoutDates.blackout_date.asc(), SlotBlackoutDates.id).all()


def create_blackout_date(
    db: Session,
    blackout_date: date,
    service_id: str | None = None,
    reason: str | None = None,
    created_by: str | None = None,
) -> SlotBlackoutDates:
    """Create a blackout; an existing (date, service) pair is a conflict."""
    service_id = service_id or None

    # NULL service ids never collide in a SQL unique index, check explicitly
    existing = db.query(SlotBlackoutDates).filter(SlotBlackoutDates.blackout_date == blackout_date)
    if service_id is None:
        existing = existing.filter(SlotBlackoutDates.service_id.is_(None))
    else:
        existing = existing.filter(SlotBlackoutDates.service_id == service_id)
    if existing.first():
        raise ConflictError("A blackout for this date and service already exists")

    obj = SlotBlackoutDates(
        blackout_date=blackout_date,
        service_id=service_id,
        reason=reason,
        created_by=created_by,
    )
    db.add(obj)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("A blackout for this date and service already exists")
    db.refresh(obj)

    logger.info(f"Blackout {obj.id} created for {blackout_date} (service={service_id or 'all'})")
    return obj


def delete_blackout_date(db: Session, blackout_id: int) -> None:
    obj = db.get(SlotBlackoutDates, blackout_id)
    if not obj:
        raise NotFoundError("Blackout date not found")
    db.delete(obj)
    db.commit()
    logger.info(f"Blackout {blackout_id} deleted")
