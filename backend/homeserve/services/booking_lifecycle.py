# backend/homeserve/services/booking_lifecycle.py
"""
Booking lifecycle.

    pending → confirmed → assigned → in_progress → completed
    pending | confirmed | assigned | in_progress | provider_cancelled → cancelled
    confirmed | assigned | in_progress → provider_cancelled → assigned

- completed and cancelled are terminal.
- provider_cancelled keeps the customer's slot (it still occupies capacity)
  and only clears the provider, so an admin can reassign.
- Every operation loads the booking, checks the transition, mutates,
  stages outbox events and commits once. Any failure rolls the whole
  transaction back.
- Booking rows are versioned. A commit that would overwrite a change made
  by another request since the row was loaded raises ConcurrentUpdateError.
- The provider starts the job with the customer's six-digit service OTP,
  which is accepted once.
- Notifications are delivered from the outbox after commit; a delivery
  failure never affects the booking.

Slot capacity is claimed at insert time (insert_booking): the slot lock is
taken, the slot is re-checked with the shared availability predicate inside
the same transaction, then the row is written.
"""

import hmac
import logging
import secrets
from datetime import date, datetime

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    AuthorizationError,
    CapacityExceededError,
    ConcurrentUpdateError,
    ConflictError,
    DependencyError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import Bookings
from ..schemas.bookings import BookingCreate, DeliveryAddress
from .events import (
    AUDIENCE_ADMINS,
    AUDIENCE_PROVIDER,
    AUDIENCE_USER,
    booking_payload,
    record_event,
)
from .payment_gateway import PaymentGateway
from .providers import ProviderDirectory, SqlProviderDirectory
from .slots import (
    BookingConfig,
    check_slot,
    get_booking_config,
    lock_slot,
    parse_slot_time,
)
from .slots.availability import REASON_BLACKOUT, REASON_FULL, REASON_PAST, SlotCheck

logger = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
ASSIGNED = "assigned"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"
PROVIDER_CANCELLED = "provider_cancelled"

STATUSES = (PENDING, CONFIRMED, ASSIGNED, IN_PROGRESS, COMPLETED, CANCELLED, PROVIDER_CANCELLED)
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, ASSIGNED, IN_PROGRESS, CANCELLED}),
    CONFIRMED: frozenset({ASSIGNED, IN_PROGRESS, CANCELLED, PROVIDER_CANCELLED}),
    ASSIGNED: frozenset({IN_PROGRESS, CANCELLED, PROVIDER_CANCELLED}),
    IN_PROGRESS: frozenset({COMPLETED, CANCELLED, PROVIDER_CANCELLED}),
    PROVIDER_CANCELLED: frozenset({ASSIGNED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}

PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"paid", "failed"}),
    "paid": frozenset({"refunded"}),
    "failed": frozenset(),
    "refunded": frozenset(),
}

# only these may have their slot, address or schedule changed by the customer
EDITABLE_STATUSES = (PENDING, CONFIRMED)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if target not in STATUSES:
        raise ValidationError(f"Invalid status '{target}'")
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def ensure_payment_transition(current: str, target: str) -> None:
    if target not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status '{target}'")
    if target not in PAYMENT_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current, target)


# ── Insert path (shared with batch creation) ────────────────────────────


def insert_booking(
    db: Session,
    *,
    user_id: str,
    service: dict,
    total_amount: float,
    delivery_address: dict,
    booking_date: date,
    time_slot: str,
    batch_id: str | None = None,
    currency: str = "INR",
    address_id: str | None = None,
    payment_method: str | None = None,
    promo_code: str | None = None,
    discount_amount: float = 0,
    tip_amount: float = 0,
    customer_notes: str | None = None,
    now: datetime | None = None,
    config: BookingConfig | None = None,
    lock: bool = True,
) -> Bookings:
    """
    Claim one capacity unit and stage the booking row (no commit).

    Pass lock=False only when the caller already holds the slot lock in this
    transaction.
    """
    now = now or datetime.now()
    service_id = service["service_id"]
    start_minute = parse_slot_time(time_slot)

    if lock:
        lock_slot(db, service_id, booking_date, start_minute)

    check = check_slot(db, booking_date, start_minute, service_id, now=now, config=config)
    raise_for_slot(check, time_slot)

    booking = Bookings(
        batch_id=batch_id,
        user_id=user_id,
        service=service,
        service_id=service_id,
        total_amount=round(total_amount, 2),
        currency=currency,
        address_id=address_id,
        delivery_address=delivery_address,
        booking_date=booking_date,
        time_slot=check.label,
        slot_start_minute=start_minute,
        status=PENDING,
        payment_status="pending",
        payment_method=payment_method,
        promo_code=promo_code,
        discount_amount=round(discount_amount, 2),
        tip_amount=round(tip_amount, 2),
        customer_notes=customer_notes,
        service_otp=generate_service_otp(),
        created_at=now,
        updated_at=now,
    )
    db.add(booking)
    # later capacity checks in this transaction must see this row
    db.flush()

    record_event(db, booking.id, AUDIENCE_USER, "booking:created", booking_payload(booking), recipient_id=user_id)
    record_event(db, booking.id, AUDIENCE_ADMINS, "booking:new", booking_payload(booking, user_id=user_id))
    return booking


def raise_for_slot(check: SlotCheck, time_slot: str) -> None:
    if check.is_available:
        return
    if check.reason == REASON_FULL:
        raise CapacityExceededError()
    if check.reason == REASON_BLACKOUT:
        raise ConflictError("Bookings are closed on this date, please choose another")
    if check.reason == REASON_PAST:
        raise ConflictError("This time slot has already started, please choose another")
    raise ValidationError(f"'{time_slot}' is not a bookable time slot on {check.date.isoformat()}")


# ── Operations ───────────────────────────────────────────────────────────


def create_booking(
    db: Session,
    user_id: str,
    data: BookingCreate,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> Bookings:
    """Create a single booking in `pending`."""
    now = now or datetime.now()
    if data.booking_date < now.date():
        raise ValidationError("Cannot book a date in the past")

    try:
        booking = insert_booking(
            db,
            user_id=user_id,
            service=data.service.model_dump(),
            total_amount=data.total_amount,
            delivery_address=data.delivery_address.model_dump(),
            booking_date=data.booking_date,
            time_slot=data.time_slot,
            currency=data.currency,
            address_id=data.address_id,
            payment_method=data.payment_method,
            promo_code=data.promo_code,
            discount_amount=data.discount_amount,
            tip_amount=data.tip_amount,
            customer_notes=data.customer_notes,
            now=now,
            config=config,
        )
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(
        f"Booking {booking.id} created for user {user_id}: "
        f"service={booking.service_id} {booking.booking_date} {booking.time_slot}"
    )
    return booking


def confirm_booking(db: Session, booking_id: str, now: datetime | None = None) -> Bookings:
    """pending → confirmed (payment or admin confirmation)."""
    now = now or datetime.now()
    try:
        booking = _load_for_update(db, booking_id)
        ensure_transition(booking.status, CONFIRMED)
        booking.status = CONFIRMED
        booking.updated_at = now
        _notify_status(db, booking)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking_id} confirmed")
    return booking


def assign_provider(
    db: Session,
    booking_id: str,
    provider_id: str,
    providers: ProviderDirectory | None = None,
    now: datetime | None = None,
) -> Bookings:
    """pending/confirmed/provider_cancelled → assigned."""
    now = now or datetime.now()
    providers = providers or SqlProviderDirectory(db)

    try:
        provider = providers.get_provider(provider_id)
        if provider is None:
            raise NotFoundError("Provider not found")
        if not provider.is_assignable:
            raise ConflictError(f"Provider is not approved or active (status: {provider.status})")

        booking = _load_for_update(db, booking_id)
        ensure_transition(booking.status, ASSIGNED)

        booking.status = ASSIGNED
        booking.provider_id = provider_id
        booking.assigned_at = now
        booking.updated_at = now

        payload = booking_payload(booking, assigned_at=now.isoformat())
        record_event(db, booking.id, AUDIENCE_PROVIDER, "booking:assigned", payload, recipient_id=provider_id)
        record_event(db, booking.id, AUDIENCE_USER, "booking:provider-assigned", payload, recipient_id=booking.user_id)
        record_event(db, booking.id, AUDIENCE_ADMINS, "booking:status-updated", payload)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking_id} assigned to provider {provider_id}")
    return booking


def start_service(
    db: Session,
    booking_id: str,
    provider_id: str,
    otp: str,
    now: datetime | None = None,
) -> Bookings:
    """
    → in_progress, by the assigned provider on site.

    The provider submits the service OTP the customer holds. It is accepted
    once; a wrong code changes nothing.
    """
    now = now or datetime.now()
    if not otp:
        raise ValidationError("OTP is required")

    try:
        booking = _load_for_update(db, booking_id)
        _authorize_provider(booking, provider_id)
        if booking.otp_verified_at is not None:
            raise ConflictError("Service OTP has already been used")
        ensure_transition(booking.status, IN_PROGRESS)
        if not booking.service_otp or not hmac.compare_digest(booking.service_otp.encode(), otp.strip().encode()):
            logger.warning(f"Wrong service OTP for booking {booking_id} from provider {provider_id}")
            raise ValidationError("Invalid OTP")

        booking.status = IN_PROGRESS
        booking.otp_verified_at = now
        booking.started_at = now
        booking.updated_at = now
        _notify_status(db, booking)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking_id} started by provider {provider_id}")
    return booking


def complete_booking(
    db: Session,
    booking_id: str,
    provider_id: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Bookings:
    """
    in_progress → completed.

    Cash-on-delivery bookings still pending payment become paid: the cash
    is collected when the job is done.
    """
    now = now or datetime.now()
    try:
        booking = _load_for_update(db, booking_id)
        if provider_id is not None:
            _authorize_provider(booking, provider_id)
        ensure_transition(booking.status, COMPLETED)

        booking.status = COMPLETED
        booking.completed_at = now
        booking.updated_at = now
        if notes:
            booking.provider_notes = notes
        if booking.payment_method == "cod" and booking.payment_status == "pending":
            booking.payment_status = "paid"

        _notify_status(db, booking, completed_at=now.isoformat())
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking_id} completed (payment={booking.payment_status})")
    return booking


def cancel_booking(
    db: Session,
    booking_id: str,
    user_id: str | None = None,
    reason: str | None = None,
    gateway: PaymentGateway | None = None,
    cancelled_by: str = "user",
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> Bookings:
    """
    Customer (or admin) cancellation: any non-terminal status → cancelled.

    Paid bookings are refunded by how far ahead the slot is:
        > full_refund_hours  → 100%
        > half_refund_hours  → 50%
        otherwise            → 0%
    The refund is requested after the cancellation commits; a gateway
    failure is recorded on the booking and does not undo the cancellation.
    """
    now = now or datetime.now()
    config = config or get_booking_config()

    try:
        booking = _load_for_update(db, booking_id, user_id=user_id)
        ensure_transition(booking.status, CANCELLED)

        refund_amount = 0.0
        if booking.payment_status == "paid":
            refund_amount = round(booking.total_amount * refund_percentage(booking, now, config) / 100, 2)

        previous_provider = booking.provider_id
        booking.status = CANCELLED
        booking.cancelled_at = now
        booking.cancelled_by = cancelled_by
        booking.cancellation_reason = reason or "Cancelled by user"
        booking.updated_at = now
        booking.refund_amount = refund_amount
        booking.refund_status = "pending" if refund_amount > 0 and booking.payment_id else "none"

        _notify_status(db, booking, cancellation_reason=booking.cancellation_reason)
        if previous_provider:
            record_event(
                db, booking.id, AUDIENCE_PROVIDER, "booking:cancelled",
                booking_payload(booking), recipient_id=previous_provider,
            )
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    logger.info(f"Booking {booking_id} cancelled by {cancelled_by} (refund={refund_amount:.2f})")

    if booking.refund_status == "pending" and gateway is not None:
        issue_refund(db, booking, gateway, now=now)

    db.refresh(booking)
    return booking


def refund_percentage(booking: Bookings, now: datetime, config: BookingConfig) -> int:
    slot_start = datetime.combine(booking.booking_date, datetime.min.time())
    slot_start = slot_start.replace(hour=booking.slot_start_minute // 60, minute=booking.slot_start_minute % 60)
    hours_until = (slot_start - now).total_seconds() / 3600

    if hours_until > config.full_refund_hours:
        return 100
    if hours_until > config.half_refund_hours:
        return 50
    return 0


def issue_refund(
    db: Session,
    booking: Bookings,
    gateway: PaymentGateway,
    now: datetime | None = None,
) -> None:
    """Request the refund for a cancelled booking and record the outcome."""
    now = now or datetime.now()
    try:
        refund_id = gateway.refund(booking.payment_id, booking.refund_amount)
    except DependencyError as e:
        logger.error(f"Refund for booking {booking.id} failed: {e.message}")
        booking.refund_status = "failed"
    else:
        booking.refund_id = refund_id
        booking.refund_status = "initiated"
        if booking.refund_amount >= booking.total_amount:
            ensure_payment_transition(booking.payment_status, "refunded")
            booking.payment_status = "refunded"
        record_event(
            db, booking.id, AUDIENCE_USER, "booking:refund-initiated",
            booking_payload(booking, refund_amount=booking.refund_amount, refund_id=refund_id),
            recipient_id=booking.user_id,
        )
    booking.updated_at = now
    booking_ref, refund_status, recorded_id = booking.id, booking.refund_status, booking.refund_id
    try:
        commit_changes(db)
    except Exception:
        db.rollback()
        logger.error(f"Refund outcome for booking {booking_ref} not recorded: status={refund_status} refund_id={recorded_id}")
        raise


def provider_cancel(
    db: Session,
    booking_id: str,
    provider_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Bookings:
    """
    Provider declines the job: → provider_cancelled.

    The provider link is cleared; the booking keeps its slot and goes back
    to the assignment pool.
    """
    now = now or datetime.now()
    try:
        booking = _load_for_update(db, booking_id)
        _authorize_provider(booking, provider_id)
        ensure_transition(booking.status, PROVIDER_CANCELLED)

        booking.status = PROVIDER_CANCELLED
        booking.provider_id = None
        booking.assigned_at = None
        booking.updated_at = now
        if reason:
            booking.provider_notes = reason
        if booking.otp_verified_at is not None:
            # the next provider starts the job with a fresh code
            booking.service_otp = generate_service_otp()
            booking.otp_verified_at = None
            booking.started_at = None

        record_event(
            db, booking.id, AUDIENCE_USER, "booking:provider-cancelled",
            booking_payload(
                booking,
                message="Your provider cancelled. We're finding a new provider for you.",
            ),
            recipient_id=booking.user_id,
        )
        record_event(
            db, booking.id, AUDIENCE_ADMINS, "booking:provider-cancelled",
            booking_payload(
                booking,
                previous_provider_id=provider_id,
                urgent=True,
                message=f"Provider {provider_id} cancelled booking #{booking.id[:8]}. Needs reassignment.",
            ),
        )
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.warning(f"Booking {booking_id} declined by provider {provider_id}, needs reassignment")
    return booking


def update_payment_status(
    db: Session,
    booking_id: str,
    provider_id: str,
    payment_status: str,
    now: datetime | None = None,
) -> Bookings:
    """Cash collection by the assigned provider (COD bookings only)."""
    now = now or datetime.now()
    try:
        booking = _load_for_update(db, booking_id)
        _authorize_provider(booking, provider_id)

        if booking.payment_method != "cod":
            raise ValidationError("Payment status can only be updated for COD orders")
        if booking.status not in (IN_PROGRESS, COMPLETED):
            raise ConflictError("Service must be in progress or completed to collect payment")
        ensure_payment_transition(booking.payment_status, payment_status)

        booking.payment_status = payment_status
        booking.updated_at = now

        payload = booking_payload(booking)
        record_event(db, booking.id, AUDIENCE_USER, "booking:payment-updated", payload, recipient_id=booking.user_id)
        record_event(db, booking.id, AUDIENCE_ADMINS, "booking:payment-updated", payload)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking_id} payment → {payment_status} (provider {provider_id})")
    return booking


def reschedule_booking(
    db: Session,
    booking_id: str,
    user_id: str,
    booking_date: date,
    time_slot: str,
    now: datetime | None = None,
    config: BookingConfig | None = None,
) -> Bookings:
    """Move a pending/confirmed booking to another slot, capacity-guarded."""
    now = now or datetime.now()
    if booking_date < now.date():
        raise ValidationError("Cannot book a date in the past")
    start_minute = parse_slot_time(time_slot)

    try:
        booking = _load_for_update(db, booking_id, user_id=user_id)
        if booking.status not in EDITABLE_STATUSES:
            raise ConflictError("Only pending or confirmed bookings can be rescheduled")

        if (booking.booking_date, booking.slot_start_minute) != (booking_date, start_minute):
            lock_slot(db, booking.service_id, booking_date, start_minute)
            check = check_slot(db, booking_date, start_minute, booking.service_id, now=now, config=config)
            raise_for_slot(check, time_slot)

            booking.booking_date = booking_date
            booking.time_slot = check.label
            booking.slot_start_minute = start_minute
            booking.updated_at = now
            _notify_status(db, booking, rescheduled=True)
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking_id} rescheduled to {booking.booking_date} {booking.time_slot}")
    return booking


def update_booking_address(
    db: Session,
    booking_id: str,
    user_id: str,
    address: DeliveryAddress,
    now: datetime | None = None,
) -> Bookings:
    now = now or datetime.now()
    try:
        booking = _load_for_update(db, booking_id, user_id=user_id)
        if booking.status not in EDITABLE_STATUSES:
            raise ConflictError("Address can only be changed for pending or confirmed bookings")
        booking.delivery_address = address.model_dump()
        booking.updated_at = now
        commit_changes(db)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    return booking


# ── Queries ──────────────────────────────────────────────────────────────


def get_booking(db: Session, booking_id: str, user_id: str | None = None) -> Bookings:
    query = db.query(Bookings).filter(Bookings.id == booking_id)
    if user_id is not None:
        query = query.filter(Bookings.user_id == user_id)
    booking = query.first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def list_user_bookings(
    db: Session,
    user_id: str,
    status: str | None = None,
    batch_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Bookings]:
    query = db.query(Bookings).filter(Bookings.user_id == user_id)
    if status:
        query = query.filter(Bookings.status == status)
    if batch_id:
        query = query.filter(Bookings.batch_id == batch_id)
    return (
        query.order_by(Bookings.created_at.desc(), Bookings.id)
        .offset(offset)
        .limit(limit)
        .all()
    )


def list_user_batches(db: Session, user_id: str, limit: int = 20) -> list[dict]:
    """Group the user's batch bookings, newest batch first."""
    rows = (
        db.query(Bookings)
        .filter(Bookings.user_id == user_id, Bookings.batch_id.isnot(None))
        .order_by(Bookings.created_at.desc(), Bookings.booking_date, Bookings.slot_start_minute)
        .all()
    )

    batches: dict[str, dict] = {}
    for b in rows:
        batch = batches.get(b.batch_id)
        if batch is None:
            if len(batches) >= limit:
                continue
            batch = batches[b.batch_id] = {
                "batch_id": b.batch_id,
                "bookings_count": 0,
                "total_amount": 0.0,
                "created_at": b.created_at,
                "bookings": [],
            }
        batch["bookings_count"] += 1
        batch["total_amount"] = round(batch["total_amount"] + (b.total_amount or 0), 2)
        batch["bookings"].append({
            "id": b.id,
            "status": b.status,
            "payment_status": b.payment_status,
            "time_slot": b.time_slot,
            "booking_date": b.booking_date,
        })
    return list(batches.values())


# ── Helpers ──────────────────────────────────────────────────────────────


def commit_changes(db: Session) -> None:
    """
    Commit booking changes.

    Each booking UPDATE is matched on the version read at load time
    (Bookings.__mapper_args__). with_for_update() is a no-op on SQLite, so
    this is what stops a concurrent request's transition from being
    silently overwritten there.
    """
    try:
        db.commit()
    except StaleDataError as e:
        logger.warning(f"Concurrent booking update rejected: {e}")
        raise ConcurrentUpdateError() from e


def generate_service_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def _load_for_update(db: Session, booking_id: str, user_id: str | None = None) -> Bookings:
    query = db.query(Bookings).filter(Bookings.id == booking_id)
    if user_id is not None:
        query = query.filter(Bookings.user_id == user_id)
    booking = query.with_for_update().populate_existing().first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _authorize_provider(booking: Bookings, provider_id: str) -> None:
    if not provider_id or booking.provider_id != provider_id:
        raise AuthorizationError("This booking is not assigned to you")


def _notify_status(db: Session, booking: Bookings, **extra) -> None:
    payload = booking_payload(booking, **extra)
    record_event(db, booking.id, AUDIENCE_USER, "booking:status-updated", payload, recipient_id=booking.user_id)
    record_event(db, booking.id, AUDIENCE_ADMINS, "booking:status-updated", payload)
