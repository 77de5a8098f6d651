# backend/homeserve/routers/admin.py
"""
Admin booking endpoints: provider assignment and manual status changes.
"""

from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import ValidationError
from ..schemas.bookings import AssignProviderRequest, BookingRead, StatusUpdate
from ..services import booking_lifecycle
from ..services.payment_gateway import PaymentGateway
from ..services.providers import SqlProviderDirectory
from .deps import outbox_drainer, payment_gateway

router = APIRouter(prefix="/admin/bookings", tags=["admin"])


@router.patch("/{id}/assign-provider", response_model=BookingRead)
def assign_provider(
    id: str,
    data: AssignProviderRequest,
    background_tasks: BackgroundTasks,
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    booking = booking_lifecycle.assign_provider(db, id, data.provider_id, SqlProviderDirectory(db))
    background_tasks.add_task(drain)
    return booking


@router.patch("/{id}/status", response_model=BookingRead)
def update_status(
    id: str,
    data: StatusUpdate,
    background_tasks: BackgroundTasks,
    gateway: PaymentGateway = Depends(payment_gateway),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    """
    Manual override. Only transitions that need no extra input are allowed
    here; assignment goes through /assign-provider.
    """
    if data.status == booking_lifecycle.CONFIRMED:
        booking = booking_lifecycle.confirm_booking(db, id)
    elif data.status == booking_lifecycle.CANCELLED:
        booking = booking_lifecycle.cancel_booking(
            db, id, reason=data.reason or "Cancelled by admin", gateway=gateway, cancelled_by="admin"
        )
    elif data.status == booking_lifecycle.COMPLETED:
        booking = booking_lifecycle.complete_booking(db, id, notes=data.notes)
    elif data.status == booking_lifecycle.ASSIGNED:
        raise ValidationError("Use /assign-provider to assign a provider")
    elif data.status not in booking_lifecycle.STATUSES:
        raise ValidationError(f"Invalid status '{data.status}'")
    else:
        raise ValidationError(f"Status '{data.status}' must be set by the assigned provider")
    background_tasks.add_task(drain)
    return booking
