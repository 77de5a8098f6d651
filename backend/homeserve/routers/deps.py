# backend/homeserve/routers/deps.py
"""
Request dependencies.

Authentication happens upstream; the gateway forwards the caller's
identity in X-User-Id / X-Provider-Id.
"""

from typing import Callable

from fastapi import Header, HTTPException

from ..services.outbox import drain_outbox_once
from ..services.payment_gateway import PaymentGateway, get_payment_gateway


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id


def get_provider_id(x_provider_id: str | None = Header(None)) -> str:
    if not x_provider_id:
        raise HTTPException(status_code=401, detail="Missing provider identity")
    return x_provider_id


def get_admin_id(x_user_id: str | None = Header(None)) -> str | None:
    return x_user_id


def payment_gateway() -> PaymentGateway:
    return get_payment_gateway()


def outbox_drainer() -> Callable[[], int]:
    """Run after the response so notifications leave right away instead of on the next poll."""
    return drain_outbox_once
