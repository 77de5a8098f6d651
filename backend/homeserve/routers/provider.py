# backend/homeserve/routers/provider.py
"""
Provider endpoints. The caller is identified by X-Provider-Id and may only
touch bookings assigned to them.

PATCH /provider/bookings/{id}/status accepts:
    in_progress (alias "in-progress") - start the job, with the customer's "otp"
    completed                          - finish the job
    provider_cancelled                 - decline; booking goes back to admins

POST /provider/bookings/{id}/verify-otp starts the job from the OTP alone.
"""

from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import ValidationError
from ..schemas.bookings import BookingRead, OtpVerifyRequest, PaymentStatusUpdate, StatusUpdate
from ..services import booking_lifecycle
from .deps import get_provider_id, outbox_drainer

router = APIRouter(prefix="/provider/bookings", tags=["provider"])


@router.patch("/{id}/status", response_model=BookingRead)
def update_status(
    id: str,
    data: StatusUpdate,
    background_tasks: BackgroundTasks,
    provider_id: str = Depends(get_provider_id),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    if data.status == booking_lifecycle.IN_PROGRESS:
        booking = booking_lifecycle.start_service(db, id, provider_id, data.otp)
    elif data.status == booking_lifecycle.COMPLETED:
        booking = booking_lifecycle.complete_booking(db, id, provider_id=provider_id, notes=data.notes)
    elif data.status == booking_lifecycle.PROVIDER_CANCELLED:
        booking = booking_lifecycle.provider_cancel(db, id, provider_id, reason=data.reason)
    else:
        raise ValidationError(
            "Providers can only set status to in_progress, completed or provider_cancelled"
        )
    background_tasks.add_task(drain)
    return booking


@router.patch("/{id}/payment-status", response_model=BookingRead)
def update_payment_status(
    id: str,
    data: PaymentStatusUpdate,
    background_tasks: BackgroundTasks,
    provider_id: str = Depends(get_provider_id),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    booking = booking_lifecycle.update_payment_status(db, id, provider_id, data.payment_status)
    background_tasks.add_task(drain)
    return booking


@router.post("/{id}/verify-otp", response_model=BookingRead)
def verify_otp(
    id: str,
    data: OtpVerifyRequest,
    background_tasks: BackgroundTasks,
    provider_id: str = Depends(get_provider_id),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    booking = booking_lifecycle.start_service(db, id, provider_id, data.otp)
    background_tasks.add_task(drain)
    return booking
