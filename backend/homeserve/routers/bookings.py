# backend/homeserve/routers/bookings.py
"""
Customer booking endpoints. The caller is identified by X-User-Id.

Every mutation commits first; the outbox is drained after the response.
"""

from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.bookings import (
    AddressUpdate,
    BatchBookingCreate,
    BatchRead,
    BatchSummary,
    BookingCreate,
    CancelBatchRead,
    CancelRequest,
    CheckoutCreate,
    CheckoutRead,
    CustomerBookingRead,
    RescheduleRequest,
    VerifyPaymentRequest,
)
from ..services import batch_booking, booking_lifecycle
from ..services.payment_gateway import PaymentGateway
from .deps import get_user_id, outbox_drainer, payment_gateway

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=CustomerBookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    booking = booking_lifecycle.create_booking(db, user_id, data)
    background_tasks.add_task(drain)
    return booking


@router.post("/batch", response_model=BatchRead, status_code=status.HTTP_201_CREATED)
def create_batch(
    data: BatchBookingCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    result = batch_booking.create_batch(db, user_id, data)
    background_tasks.add_task(drain)
    return BatchRead(
        batch_id=result.batch_id,
        bookings_count=len(result.bookings),
        bookings=[CustomerBookingRead.model_validate(b) for b in result.bookings],
    )


@router.post("/checkout", response_model=CheckoutRead, status_code=status.HTTP_201_CREATED)
def checkout(
    data: CheckoutCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    gateway: PaymentGateway = Depends(payment_gateway),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    result = batch_booking.checkout(db, user_id, data, gateway)
    background_tasks.add_task(drain)
    return CheckoutRead(
        batch_id=result.batch_id,
        bookings_count=len(result.bookings),
        bookings=[CustomerBookingRead.model_validate(b) for b in result.bookings],
        payment=batch_booking.payment_order_view(result),
    )


@router.post("/verify-payment", response_model=list[CustomerBookingRead])
def verify_payment(
    data: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    gateway: PaymentGateway = Depends(payment_gateway),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    bookings = batch_booking.verify_batch_payment(
        db,
        user_id,
        data.batch_id,
        data.razorpay_order_id,
        data.razorpay_payment_id,
        data.razorpay_signature,
        gateway,
    )
    background_tasks.add_task(drain)
    return bookings


@router.get("", response_model=list[CustomerBookingRead])
def list_bookings(
    status: str | None = None,
    batch_id: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return booking_lifecycle.list_user_bookings(
        db, user_id, status=status, batch_id=batch_id, limit=limit, offset=offset
    )


@router.get("/batches", response_model=list[BatchSummary])
def list_batches(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return booking_lifecycle.list_user_batches(db, user_id, limit=limit)


@router.get("/{id}", response_model=CustomerBookingRead)
def get_booking(id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)):
    return booking_lifecycle.get_booking(db, id, user_id=user_id)


@router.post("/{id}/cancel", response_model=CustomerBookingRead)
def cancel_booking(
    id: str,
    background_tasks: BackgroundTasks,
    data: CancelRequest | None = None,
    user_id: str = Depends(get_user_id),
    gateway: PaymentGateway = Depends(payment_gateway),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    reason = data.cancellation_reason if data else None
    booking = booking_lifecycle.cancel_booking(db, id, user_id=user_id, reason=reason, gateway=gateway)
    background_tasks.add_task(drain)
    return booking


@router.patch("/{id}/reschedule", response_model=CustomerBookingRead)
def reschedule_booking(
    id: str,
    data: RescheduleRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    booking = booking_lifecycle.reschedule_booking(db, id, user_id, data.booking_date, data.time_slot)
    background_tasks.add_task(drain)
    return booking


@router.patch("/{id}/address", response_model=CustomerBookingRead)
def update_address(
    id: str,
    data: AddressUpdate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return booking_lifecycle.update_booking_address(db, id, user_id, data.delivery_address)


@router.post("/batch/{batch_id}/cancel", response_model=CancelBatchRead)
def cancel_batch(
    batch_id: str,
    background_tasks: BackgroundTasks,
    data: CancelRequest | None = None,
    user_id: str = Depends(get_user_id),
    gateway: PaymentGateway = Depends(payment_gateway),
    drain: Callable[[], int] = Depends(outbox_drainer),
    db: Session = Depends(get_db),
):
    reason = data.cancellation_reason if data else None
    cancelled = batch_booking.cancel_batch(db, user_id, batch_id, reason=reason, gateway=gateway)
    background_tasks.add_task(drain)
    return CancelBatchRead(
        cancelled_count=len(cancelled),
        bookings=[CustomerBookingRead.model_validate(b) for b in cancelled],
    )
