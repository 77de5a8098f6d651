# backend/homeserve/services/batch_booking.py
"""
Batch (cart) bookings.

One checkout = one batch_id shared by N bookings, each item with its own
service and slot. The whole batch is written in a single transaction:
either every booking persists or none does.

Discount and tip are split evenly per item, not by price.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

import pydantic
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Bookings
from ..schemas.bookings import BatchBookingCreate, CheckoutCreate
from .booking_lifecycle import (
    CANCELLED,
    CONFIRMED,
    PENDING,
    TERMINAL_STATUSES,
    commit_changes,
    ensure_payment_transition,
    insert_booking,
    issue_refund,
    refund_percentage,
)
from .events import AUDIENCE_ADMINS, AUDIENCE_PROVIDER, AUDIENCE_USER, booking_payload, record_event
from .payment_gateway import PaymentGateway
from .slots import BookingConfig, get_booking_config, lock_slot, parse_slot_time

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    batch_id: str
    bookings: list[Bookings] = field(default_factory=list)
    payment_order_id: str | None = None
    payment_amount: float = 0.0

    @property
    def total_amount(self) -> float:
        return round(sum(b.total_amount for b in self.bookings), 2)


def split_evenly(amount: float, count: int) -> float:
    return amount / count if count > 0 else 0.0


def item_total(price: float, quantity: int, discount: float, tip: float) -> float:
    return round(max(0.0, price * quantity - discount) + tip, 2)


def _parse(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        raise ValidationError(f"Invalid batch request: {where}: {first['msg']}")


def _stage_batch(
    db: Session,
    user_id: str,
    data: BatchBookingCreate,
    now: datetime,
    config: BookingConfig | None,
) -> BatchResult:
    """Validate, lock every slot and insert all items. No commit."""
    items = data.items
    keys = []
    for item in items:
        if item.slot.date < now.date():
            raise ValidationError("Cannot book a date in the past")
        keys.append((item.service.service_id, item.slot.date, parse_slot_time(item.slot.time)))

    discount_per_item = split_evenly(data.discount_amount, len(items))
    tip_per_item = split_evenly(data.tip_amount, len(items))
    address = data.delivery_address.model_dump()

    result = BatchResult(batch_id=str(uuid.uuid4()))

    # fixed lock order so two carts sharing slots cannot deadlock
    for key in sorted(set(keys)):
        lock_slot(db, *key)

    for item in items:
        svc = item.service
        booking = insert_booking(
            db,
            user_id=user_id,
            service=svc.model_dump(),
            total_amount=item_total(svc.price, svc.quantity, discount_per_item, tip_per_item),
            delivery_address=address,
            booking_date=item.slot.date,
            time_slot=item.slot.time,
            batch_id=result.batch_id,
            currency=data.currency,
            address_id=data.address_id,
            payment_method=data.payment_method,
            promo_code=data.promo_code,
            discount_amount=discount_per_item,
            tip_amount=tip_per_item,
            customer_notes=data.customer_notes,
            now=now,
            config=config,
            lock=False,
        )
        result.bookings.append(booking)

    return result


def create_batch(
    db: Session,
    user_id: str,
    data: BatchBookingCreate | dict,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> BatchResult:
    """Create all cart items atomically under one batch_id."""
    now = now or datetime.now()
    data = _parse(BatchBookingCreate, data)

    try:
        result = _stage_batch(db, user_id, data, now, config)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    for b in result.bookings:
        db.refresh(b)
    logger.info(f"Batch {result.batch_id} created for user {user_id}: {len(result.bookings)} bookings")
    return result


def checkout(
    db: Session,
    user_id: str,
    data: CheckoutCreate | dict,
    gateway: PaymentGateway,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> BatchResult:
    """
    Batch creation plus, for online payment, a gateway order.

    The order is created before commit; if the gateway fails the batch is
    rolled back and DependencyError propagates.
    """
    now = now or datetime.now()
    data = _parse(CheckoutCreate, data)

    try:
        result = _stage_batch(db, user_id, data, now, config)
        if data.payment_method == "online":
            result.payment_amount = result.total_amount
            result.payment_order_id = gateway.create_order(
                result.payment_amount, receipt=result.batch_id, currency=data.currency
            )
            for b in result.bookings:
                b.payment_order_id = result.payment_order_id
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    for b in result.bookings:
        db.refresh(b)
    logger.info(
        f"Checkout {result.batch_id} for user {user_id}: {len(result.bookings)} bookings, "
        f"method={data.payment_method}, order={result.payment_order_id}"
    )
    return result


def verify_batch_payment(
    db: Session,
    user_id: str,
    batch_id: str,
    order_id: str,
    payment_id: str,
    signature: str,
    gateway: PaymentGateway,
    now: datetime | None = None,
) -> list[Bookings]:
    """
    Mark a batch paid after the gateway signature checks out.

    Bad signature → ValidationError, bookings untouched.
    Already-paid bookings are left as they are. The order covers the whole
    batch, so the share of items cancelled before payment arrived is
    captured too; those items are marked paid and refunded in full after
    commit.
    """
    now = now or datetime.now()
    to_refund: list[Bookings] = []
    try:
        bookings = _load_batch(db, user_id, batch_id)
        if any(b.payment_order_id != order_id for b in bookings):
            raise ValidationError("Payment order does not match this batch")

        if not gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(f"Payment signature mismatch for batch {batch_id} (order {order_id})")
            raise ValidationError("Payment verification failed")

        for b in bookings:
            if b.payment_status in ("paid", "refunded"):
                continue
            ensure_payment_transition(b.payment_status, "paid")
            b.payment_status = "paid"
            b.payment_id = payment_id
            b.updated_at = now

            if b.status == CANCELLED:
                b.refund_amount = b.total_amount
                b.refund_status = "pending"
                to_refund.append(b)
                continue

            if b.status == PENDING:
                b.status = CONFIRMED
            payload = booking_payload(b, payment_id=payment_id)
            record_event(db, b.id, AUDIENCE_USER, "booking:payment-confirmed", payload, recipient_id=user_id)
            record_event(db, b.id, AUDIENCE_ADMINS, "booking:payment-confirmed", payload)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    logger.info(f"Batch {batch_id} paid (payment {payment_id})")
    for b in to_refund:
        logger.info(f"Booking {b.id} was cancelled before payment arrived, refunding {b.total_amount:.2f}")
        issue_refund(db, b, gateway, now=now)

    for b in bookings:
        db.refresh(b)
    return bookings


def cancel_batch(
    db: Session,
    user_id: str,
    batch_id: str,
    reason: str | None = None,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> list[Bookings]:
    """Cancel every still-active booking of a batch in one transaction."""
    now = now or datetime.now()
    config = config or get_booking_config()

    try:
        bookings = _load_batch(db, user_id, batch_id)
        active = [b for b in bookings if b.status not in TERMINAL_STATUSES]
        if not active:
            raise ConflictError("No bookings in this batch can be cancelled")

        for b in active:
            refund_amount = 0.0
            if b.payment_status == "paid":
                refund_amount = round(b.total_amount * refund_percentage(b, now, config) / 100, 2)

            previous_provider = b.provider_id
            b.status = CANCELLED
            b.cancelled_at = now
            b.cancelled_by = "user"
            b.cancellation_reason = reason or "Cancelled by user"
            b.refund_amount = refund_amount
            b.refund_status = "pending" if refund_amount > 0 and b.payment_id else "none"
            b.updated_at = now

            payload = booking_payload(b, cancellation_reason=b.cancellation_reason)
            record_event(db, b.id, AUDIENCE_USER, "booking:status-updated", payload, recipient_id=user_id)
            record_event(db, b.id, AUDIENCE_ADMINS, "booking:status-updated", payload)
            if previous_provider:
                record_event(db, b.id, AUDIENCE_PROVIDER, "booking:cancelled", payload, recipient_id=previous_provider)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    logger.info(f"Batch {batch_id}: {len(active)} bookings cancelled by user {user_id}")

    if gateway is not None:
        for b in active:
            if b.refund_status == "pending":
                issue_refund(db, b, gateway, now=now)

    for b in active:
        db.refresh(b)
    return active


def _load_batch(db: Session, user_id: str, batch_id: str) -> list[Bookings]:
    bookings = (
        db.query(Bookings)
        .filter(Bookings.batch_id == batch_id, Bookings.user_id == user_id)
        .order_by(Bookings.booking_date, Bookings.slot_start_minute, Bookings.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    if not bookings:
        raise NotFoundError("Batch not found")
    return bookings


def payment_order_view(result: BatchResult) -> dict | None:
    if not result.payment_order_id:
        return None
    return {
        "order_id": result.payment_order_id,
        "amount": result.payment_amount,
        "currency": result.bookings[0].currency if result.bookings else settings.default_currency,
        "key_id": settings.razorpay_key_id,
    }
