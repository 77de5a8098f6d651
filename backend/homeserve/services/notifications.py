# backend/homeserve/services/notifications.py
"""
Notification dispatch.

The booking core never calls this directly: lifecycle operations write to
the outbox, and the outbox drainer hands each row to a dispatcher.
"""

import logging
from typing import Protocol

from redis import Redis

from .events import emit_broadcast, emit_event

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def notify_provider(self, provider_id: str, event: str, payload: dict) -> None: ...

    def notify_user(self, user_id: str, event: str, payload: dict) -> None: ...

    def notify_admins(self, event: str, payload: dict) -> None: ...


class RedisNotificationDispatcher:
    """Delivers through the Redis queues consumed by the real-time gateway."""

    def __init__(self, redis: Redis):
        self.redis = redis

    def notify_provider(self, provider_id: str, event: str, payload: dict) -> None:
        emit_event(self.redis, event, {"target": "provider", "provider_id": provider_id, **payload})

    def notify_user(self, user_id: str, event: str, payload: dict) -> None:
        emit_event(self.redis, event, {"target": "user", "user_id": user_id, **payload})

    def notify_admins(self, event: str, payload: dict) -> None:
        emit_broadcast(self.redis, event, {"target": "admins", **payload})


def get_notification_dispatcher() -> NotificationDispatcher:
    from ..redis_client import redis_client
    return RedisNotificationDispatcher(redis_client)
