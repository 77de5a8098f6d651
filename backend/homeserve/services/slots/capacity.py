# backend/homeserve/services/slots/capacity.py
"""
Capacity counting and slot locking.

A booking occupies its (service, date, slot) unit until it is released:

    released:  cancelled, completed, failed
    occupying: everything else, provider_cancelled included
               (the customer's slot survives a provider declining the job)

Counts are always read from the bookings table, never cached.

lock_slot() serialises writers of one slot: it upserts a slot_locks row and
bumps its version inside the caller's transaction, which holds the row lock
(PostgreSQL) or the database write lock (SQLite) until commit. A recount
done after the lock therefore sees every booking committed before it.
"""

from datetime import date

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ...models import Bookings, SlotLocks
from .calculator import parse_slot_time

RELEASED_STATUSES = ("cancelled", "completed", "failed")


def _occupying_filters(
    target_date: date,
    service_id: str | None,
    provider_id: str | None,
) -> list:
    filters = [
        Bookings.booking_date == target_date,
        Bookings.status.not_in(RELEASED_STATUSES),
    ]
    if service_id:
        filters.append(Bookings.service_id == service_id)
    if provider_id:
        filters.append(Bookings.provider_id == provider_id)
    return filters


def count_occupied(
    db: Session,
    target_date: date,
    time_slot: str | int,
    service_id: str | None = None,
    provider_id: str | None = None,
) -> int:
    """Number of non-released bookings in one slot."""
    start_minute = parse_slot_time(time_slot)
    return (
        db.query(func.count(Bookings.id))
        .filter(
            *_occupying_filters(target_date, service_id, provider_id),
            Bookings.slot_start_minute == start_minute,
        )
        .scalar()
    ) or 0


def count_occupied_by_slot(
    db: Session,
    target_date: date,
    service_id: str | None = None,
    provider_id: str | None = None,
) -> dict[int, int]:
    """Non-released booking counts for a whole day, keyed by slot start minute."""
    rows = (
        db.query(Bookings.slot_start_minute, func.count(Bookings.id))
        .filter(*_occupying_filters(target_date, service_id, provider_id))
        .group_by(Bookings.slot_start_minute)
        .all()
    )
    return {start_minute: count for start_minute, count in rows}


def lock_slot(
    db: Session,
    service_id: str,
    target_date: date,
    start_minute: int,
) -> None:
    """Take the write lock for one slot within the current transaction."""
    values = {
        "service_id": service_id,
        "booking_date": target_date,
        "slot_start_minute": start_minute,
        "version": 0,
    }

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(SlotLocks).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite_insert(SlotLocks).values(**values).on_conflict_do_nothing()
    else:
        stmt = None

    if stmt is not None:
        db.execute(stmt)
    elif db.get(SlotLocks, (service_id, target_date, start_minute)) is None:
        db.add(SlotLocks(**values))
        db.flush()

    db.execute(
        update(SlotLocks)
        .where(
            SlotLocks.service_id == service_id,
            SlotLocks.booking_date == target_date,
            SlotLocks.slot_start_minute == start_minute,
        )
        .values(version=SlotLocks.version + 1)
    )
