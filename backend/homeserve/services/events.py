"""
backend/homeserve/services/events.py

Booking events.

record_event() appends a row to the booking_events outbox inside the
caller's transaction, so an event exists if and only if the state change
it describes was committed. Delivery happens later (services/outbox.py).

emit_event() / emit_broadcast() push JSON onto the Redis queues read by the
real-time gateway:
- events:p2p        addressed delivery (a user or a provider)
- events:broadcast  admin dashboards
"""

import json
import logging
import time

from redis import Redis
from sqlalchemy.orm import Session

from ..models import BookingEvents

logger = logging.getLogger(__name__)

P2P_QUEUE = "events:p2p"
BROADCAST_QUEUE = "events:broadcast"

AUDIENCE_USER = "user"
AUDIENCE_PROVIDER = "provider"
AUDIENCE_ADMINS = "admins"


def record_event(
    db: Session,
    booking_id: str | None,
    audience: str,
    event: str,
    payload: dict,
    recipient_id: str | None = None,
) -> BookingEvents:
    """Stage an outbox row; committed together with the booking change."""
    row = BookingEvents(
        booking_id=booking_id,
        audience=audience,
        recipient_id=recipient_id,
        event=event,
        payload=payload,
    )
    db.add(row)
    return row


def booking_payload(booking, **extra) -> dict:
    """Compact booking view for notifications."""
    service = booking.service or {}
    payload = {
        "booking_id": booking.id,
        "batch_id": booking.batch_id,
        "status": booking.status,
        "payment_status": booking.payment_status,
        "service_name": service.get("service_name"),
        "booking_date": booking.booking_date.isoformat() if booking.booking_date else None,
        "time_slot": booking.time_slot,
        "provider_id": booking.provider_id,
        "updated_at": booking.updated_at.isoformat() if booking.updated_at else None,
    }
    payload.update(extra)
    return payload


def emit_event(redis: Redis, event_type: str, payload: dict) -> None:
    """
    Push an addressed event onto events:p2p.

    Raises the Redis error; callers decide whether delivery failure matters.
    """
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    redis.rpush(P2P_QUEUE, json.dumps(event, default=str))
    logger.info(f"Event emitted: {event_type} → {P2P_QUEUE}")


def emit_broadcast(redis: Redis, event_type: str, payload: dict) -> None:
    """Push an admin broadcast onto events:broadcast."""
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    redis.rpush(BROADCAST_QUEUE, json.dumps(event, default=str))
    logger.info(f"Broadcast emitted: {event_type} → {BROADCAST_QUEUE}")
