"""
Outbox dispatcher.

Drains booking_events rows that have not been delivered yet and hands them
to the NotificationDispatcher. A delivery failure is logged and recorded on
the row (attempts, last_error); it never touches the booking itself.
Rows that reach outbox_max_attempts are left for inspection.

Runs as an asyncio task in the application lifespan.
Uses synchronous DB and Redis (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..config import settings
from ..models import BookingEvents
from .events import AUDIENCE_ADMINS, AUDIENCE_PROVIDER, AUDIENCE_USER
from .notifications import NotificationDispatcher, get_notification_dispatcher

logger = logging.getLogger(__name__)


def drain_outbox(
    db: Session,
    dispatcher: NotificationDispatcher,
    limit: int | None = None,
    max_attempts: int | None = None,
    claim_seconds: int | None = None,
) -> int:
    """
    Deliver pending events in creation order.

    Each row is claimed with a conditional UPDATE (committed) before it is
    sent, so drainers running side by side never deliver the same row. A
    claim left behind by a crashed drainer expires after claim_seconds.

    Returns:
        Number of events delivered successfully.
    """
    limit = limit or settings.outbox_batch_size
    max_attempts = max_attempts or settings.outbox_max_attempts
    claim_seconds = claim_seconds or settings.outbox_claim_seconds

    rows = (
        db.query(BookingEvents)
        .filter(
            BookingEvents.dispatched_at.is_(None),
            BookingEvents.attempts < max_attempts,
            _unclaimed(datetime.now() - timedelta(seconds=claim_seconds)),
        )
        .order_by(BookingEvents.id)
        .limit(limit)
        .all()
    )
    db.commit()

    delivered = 0
    for row in rows:
        if not _claim(db, row.id, max_attempts, claim_seconds):
            continue
        try:
            _deliver(dispatcher, row)
        except Exception as e:
            row.claimed_at = None
            row.last_error = str(e)[:500]
            logger.exception(
                f"Failed to deliver event {row.id} ({row.event}) for booking {row.booking_id}, "
                f"attempt {row.attempts}"
            )
        else:
            row.dispatched_at = datetime.now()
            row.last_error = None
            delivered += 1
        db.commit()

    return delivered


def _unclaimed(stale_before: datetime):
    return or_(BookingEvents.claimed_at.is_(None), BookingEvents.claimed_at < stale_before)


def _claim(db: Session, event_id: int, max_attempts: int, claim_seconds: int) -> bool:
    """Take the row for this drainer; False when another drainer got it first."""
    now = datetime.now()
    result = db.execute(
        update(BookingEvents)
        .where(
            BookingEvents.id == event_id,
            BookingEvents.dispatched_at.is_(None),
            BookingEvents.attempts < max_attempts,
            _unclaimed(now - timedelta(seconds=claim_seconds)),
        )
        .values(claimed_at=now, attempts=BookingEvents.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _deliver(dispatcher: NotificationDispatcher, row: BookingEvents) -> None:
    payload = dict(row.payload or {})
    if row.audience == AUDIENCE_USER:
        dispatcher.notify_user(row.recipient_id, row.event, payload)
    elif row.audience == AUDIENCE_PROVIDER:
        dispatcher.notify_provider(row.recipient_id, row.event, payload)
    elif row.audience == AUDIENCE_ADMINS:
        dispatcher.notify_admins(row.event, payload)
    else:
        raise ValueError(f"Unknown audience '{row.audience}'")


def drain_outbox_once() -> int:
    """Open a session, drain one batch, close (for background tasks)."""
    from ..database import SessionLocal

    db = SessionLocal()
    try:
        return drain_outbox(db, get_notification_dispatcher())
    finally:
        db.close()


async def outbox_dispatcher_loop() -> None:
    """Periodic loop delivering outbox events."""
    logger.info("outbox_dispatcher_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(drain_outbox_once)
            except asyncio.CancelledError:
                logger.info("outbox_dispatcher_loop cancelled")
                raise
            except Exception:
                logger.exception("outbox_dispatcher_loop error")

            await asyncio.sleep(settings.outbox_poll_seconds)
    except asyncio.CancelledError:
        pass
