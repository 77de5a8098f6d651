"""Tests for the booking state machine and lifecycle operations."""

import warnings
from datetime import timedelta
from pathlib import Path

import pytest

from homeserve.errors import (
    AuthorizationError,
    CapacityExceededError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from homeserve.models import BookingEvents, Bookings
from homeserve.schemas.bookings import DeliveryAddress
from homeserve.services import booking_lifecycle as lc
from homeserve.services.providers import ProviderInfo
from homeserve.services.slots import count_occupied
from homeserve.services.slots.blackouts import create_blackout_date

from conftest import ADDRESS, MONDAY, NOW, SERVICE, FakeGateway, booking_data

ALLOWED = {
    ("pending", "confirmed"),
    ("pending", "assigned"),
    ("pending", "in_progress"),
    ("pending", "cancelled"),
    ("confirmed", "assigned"),
    ("confirmed", "in_progress"),
    ("confirmed", "cancelled"),
    ("confirmed", "provider_cancelled"),
    ("assigned", "in_progress"),
    ("assigned", "cancelled"),
    ("assigned", "provider_cancelled"),
    ("in_progress", "completed"),
    ("in_progress", "cancelled"),
    ("in_progress", "provider_cancelled"),
    ("provider_cancelled", "assigned"),
    ("provider_cancelled", "cancelled"),
}


def create(db, time_slot="09:00 AM", user_id="user-1", **extra):
    return lc.create_booking(db, user_id, booking_data(time_slot=time_slot, **extra), now=NOW)


def events_for(db, booking_id):
    return [
        (e.audience, e.event)
        for e in db.query(BookingEvents).filter(BookingEvents.booking_id == booking_id).order_by(BookingEvents.id)
    ]


class TestTransitionTable:
    @pytest.mark.parametrize("current", lc.STATUSES)
    @pytest.mark.parametrize("target", lc.STATUSES)
    def test_matrix(self, current, target):
        expected = (current, target) in ALLOWED
        assert lc.can_transition(current, target) is expected
        if expected:
            lc.ensure_transition(current, target)
        else:
            with pytest.raises(InvalidTransitionError):
                lc.ensure_transition(current, target)

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_states_have_no_exits(self, status):
        assert status in lc.TERMINAL_STATUSES
        assert not lc.TRANSITIONS[status]

    def test_unknown_target_is_validation_error(self):
        with pytest.raises(ValidationError):
            lc.ensure_transition("pending", "teleported")

    def test_invalid_transition_is_conflict(self):
        assert issubclass(InvalidTransitionError, ConflictError)

    @pytest.mark.parametrize("current,target,ok", [
        ("pending", "paid", True),
        ("pending", "failed", True),
        ("paid", "refunded", True),
        ("paid", "pending", False),
        ("refunded", "paid", False),
        ("failed", "paid", False),
    ])
    def test_payment_transitions(self, current, target, ok):
        if ok:
            lc.ensure_payment_transition(current, target)
        else:
            with pytest.raises(InvalidTransitionError):
                lc.ensure_payment_transition(current, target)


class TestCreateBooking:
    def test_creates_pending_booking(self, db, monday_rule):
        booking = create(db)

        assert booking.status == "pending"
        assert booking.payment_status == "pending"
        assert booking.time_slot == "09:00 AM"
        assert booking.service_id == SERVICE
        assert booking.service["service_name"] == f"Service {SERVICE}"

    def test_records_outbox_events(self, db, monday_rule):
        booking = create(db)
        assert events_for(db, booking.id) == [("user", "booking:created"), ("admins", "booking:new")]

    def test_full_slot_raises_capacity_error(self, db, monday_rule):
        create(db)
        create(db, user_id="user-2")
        with pytest.raises(CapacityExceededError) as exc:
            create(db, user_id="user-3")
        assert "no longer available" in exc.value.message
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE) == 2

    def test_cancelled_booking_frees_slot(self, db, monday_rule):
        first = create(db)
        create(db, user_id="user-2")
        lc.cancel_booking(db, first.id, user_id="user-1", now=NOW)
        assert create(db, user_id="user-3").status == "pending"

    def test_blackout_is_conflict(self, db, monday_rule):
        create_blackout_date(db, MONDAY, service_id=SERVICE)
        with pytest.raises(ConflictError):
            create(db)

    def test_unknown_slot_is_validation_error(self, db, monday_rule):
        with pytest.raises(ValidationError):
            create(db, time_slot="09:30 AM")

    def test_past_date_rejected(self, db, monday_rule):
        with pytest.raises(ValidationError):
            lc.create_booking(db, "user-1", booking_data(booking_date=NOW.date() - timedelta(days=1)), now=NOW)

    def test_failed_create_leaves_nothing(self, db, monday_rule):
        with pytest.raises(ValidationError):
            create(db, time_slot="07:00 AM")
        assert db.query(Bookings).count() == 0
        assert db.query(BookingEvents).count() == 0


class TestAssignProvider:
    def test_assigns_approved_provider(self, db, monday_rule, providers):
        booking = create(db)

        assigned = lc.assign_provider(db, booking.id, "prov-1", now=NOW)

        assert assigned.status == "assigned"
        assert assigned.provider_id == "prov-1"
        assert assigned.assigned_at == NOW
        assert ("provider", "booking:assigned") in events_for(db, booking.id)

    def test_unknown_provider(self, db, monday_rule, providers):
        booking = create(db)
        with pytest.raises(NotFoundError):
            lc.assign_provider(db, booking.id, "nobody")

    def test_unapproved_provider(self, db, monday_rule, providers):
        booking = create(db)
        with pytest.raises(ConflictError):
            lc.assign_provider(db, booking.id, "prov-pending")
        assert db.get(Bookings, booking.id).status == "pending"

    def test_uses_given_directory(self, db, monday_rule, providers):
        class Directory:
            def get_provider(self, provider_id):
                return ProviderInfo(id=provider_id, status="suspended")

        booking = create(db)
        with pytest.raises(ConflictError):
            lc.assign_provider(db, booking.id, "prov-1", providers=Directory())

    def test_unknown_booking(self, db, providers):
        with pytest.raises(NotFoundError):
            lc.assign_provider(db, "missing", "prov-1")


class TestProviderFlow:
    @pytest.fixture
    def assigned(self, db, monday_rule, providers):
        booking = create(db)
        return lc.assign_provider(db, booking.id, "prov-1", now=NOW)

    def test_start_requires_assigned_provider(self, db, assigned):
        with pytest.raises(AuthorizationError):
            lc.start_service(db, assigned.id, "prov-2", assigned.service_otp)
        assert db.get(Bookings, assigned.id).status == "assigned"

    def test_start_and_complete(self, db, assigned):
        lc.start_service(db, assigned.id, "prov-1", assigned.service_otp)
        done = lc.complete_booking(db, assigned.id, provider_id="prov-1", notes="All clean", now=NOW)

        assert done.status == "completed"
        assert done.completed_at == NOW
        assert done.provider_notes == "All clean"
        assert done.payment_status == "paid"

    def test_new_booking_gets_six_digit_otp(self, db, monday_rule):
        booking = create(db)
        assert len(booking.service_otp) == 6
        assert booking.service_otp.isdigit()
        assert booking.otp_verified_at is None

    def test_correct_otp_starts_job(self, db, assigned):
        started = lc.start_service(db, assigned.id, "prov-1", assigned.service_otp, now=NOW)

        assert started.status == "in_progress"
        assert started.started_at == NOW
        assert started.otp_verified_at == NOW
        assert ("user", "booking:status-updated") in events_for(db, assigned.id)

    def test_wrong_otp_changes_nothing(self, db, assigned):
        wrong = "000000" if assigned.service_otp != "000000" else "111111"
        with pytest.raises(ValidationError):
            lc.start_service(db, assigned.id, "prov-1", wrong)

        booking = db.get(Bookings, assigned.id)
        assert booking.status == "assigned"
        assert booking.otp_verified_at is None
        assert booking.started_at is None

    def test_missing_otp(self, db, assigned):
        with pytest.raises(ValidationError):
            lc.start_service(db, assigned.id, "prov-1", "")
        assert db.get(Bookings, assigned.id).status == "assigned"

    def test_otp_is_single_use(self, db, assigned):
        otp = assigned.service_otp
        lc.start_service(db, assigned.id, "prov-1", otp)
        with pytest.raises(ConflictError):
            lc.start_service(db, assigned.id, "prov-1", otp)
        assert db.get(Bookings, assigned.id).status == "in_progress"

    def test_decline_after_start_issues_fresh_otp(self, db, assigned):
        used = assigned.service_otp
        lc.start_service(db, assigned.id, "prov-1", used)
        declined = lc.provider_cancel(db, assigned.id, "prov-1")
        assert declined.otp_verified_at is None
        assert declined.started_at is None

        again = lc.assign_provider(db, assigned.id, "prov-2")
        started = lc.start_service(db, again.id, "prov-2", again.service_otp)
        assert started.status == "in_progress"

    def test_complete_only_from_in_progress(self, db, assigned):
        with pytest.raises(InvalidTransitionError):
            lc.complete_booking(db, assigned.id, provider_id="prov-1")

    def test_online_payment_not_marked_paid_on_completion(self, db, monday_rule, providers):
        booking = create(db, payment_method="online")
        lc.assign_provider(db, booking.id, "prov-1")
        lc.start_service(db, booking.id, "prov-1", booking.service_otp)
        done = lc.complete_booking(db, booking.id, provider_id="prov-1")
        assert done.payment_status == "pending"

    def test_provider_cancel_keeps_slot(self, db, assigned):
        declined = lc.provider_cancel(db, assigned.id, "prov-1", reason="Sick")

        assert declined.status == "provider_cancelled"
        assert declined.provider_id is None
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE) == 1
        events = events_for(db, assigned.id)
        assert ("admins", "booking:provider-cancelled") in events
        assert ("user", "booking:provider-cancelled") in events

    def test_reassign_after_provider_cancel(self, db, assigned):
        lc.provider_cancel(db, assigned.id, "prov-1")
        again = lc.assign_provider(db, assigned.id, "prov-2")
        assert again.status == "assigned"
        assert again.provider_id == "prov-2"

    def test_other_provider_cannot_decline(self, db, assigned):
        with pytest.raises(AuthorizationError):
            lc.provider_cancel(db, assigned.id, "prov-2")


class TestPaymentStatus:
    @pytest.fixture
    def in_progress(self, db, monday_rule, providers):
        booking = create(db)
        lc.assign_provider(db, booking.id, "prov-1")
        return lc.start_service(db, booking.id, "prov-1", booking.service_otp)

    def test_provider_collects_cash(self, db, in_progress):
        updated = lc.update_payment_status(db, in_progress.id, "prov-1", "paid")
        assert updated.payment_status == "paid"

    def test_requires_started_service(self, db, monday_rule, providers):
        booking = create(db)
        lc.assign_provider(db, booking.id, "prov-1")
        with pytest.raises(ConflictError):
            lc.update_payment_status(db, booking.id, "prov-1", "paid")

    def test_cod_only(self, db, monday_rule, providers):
        booking = create(db, payment_method="online")
        lc.assign_provider(db, booking.id, "prov-1")
        lc.start_service(db, booking.id, "prov-1", booking.service_otp)
        with pytest.raises(ValidationError):
            lc.update_payment_status(db, booking.id, "prov-1", "paid")

    def test_illegal_payment_transition(self, db, in_progress):
        lc.update_payment_status(db, in_progress.id, "prov-1", "paid")
        with pytest.raises(InvalidTransitionError):
            lc.update_payment_status(db, in_progress.id, "prov-1", "failed")

    def test_wrong_provider(self, db, in_progress):
        with pytest.raises(AuthorizationError):
            lc.update_payment_status(db, in_progress.id, "prov-2", "paid")


class TestCancel:
    def mark_paid(self, db, booking):
        booking.payment_status = "paid"
        booking.payment_method = "online"
        booking.payment_id = "pay_1"
        db.commit()

    def test_customer_cancel(self, db, monday_rule):
        booking = create(db)
        cancelled = lc.cancel_booking(db, booking.id, user_id="user-1", reason="Plans changed", now=NOW)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at == NOW
        assert cancelled.cancellation_reason == "Plans changed"
        assert cancelled.refund_status == "none"

    def test_other_user_cannot_cancel(self, db, monday_rule):
        booking = create(db)
        with pytest.raises(NotFoundError):
            lc.cancel_booking(db, booking.id, user_id="user-2")

    def test_cannot_cancel_twice(self, db, monday_rule):
        booking = create(db)
        lc.cancel_booking(db, booking.id, user_id="user-1", now=NOW)
        with pytest.raises(InvalidTransitionError):
            lc.cancel_booking(db, booking.id, user_id="user-1", now=NOW)

    def test_full_refund_well_ahead(self, db, monday_rule):
        booking = create(db)
        self.mark_paid(db, booking)
        gateway = FakeGateway()

        cancelled = lc.cancel_booking(db, booking.id, user_id="user-1", gateway=gateway, now=NOW)

        assert gateway.refunds == [("pay_1", 500.0)]
        assert cancelled.refund_amount == 500.0
        assert cancelled.refund_status == "initiated"
        assert cancelled.refund_id == "rfnd_1"
        assert cancelled.payment_status == "refunded"

    def test_half_refund_same_day(self, db, monday_rule):
        booking = create(db)
        self.mark_paid(db, booking)
        now = NOW.replace(year=2030, month=1, day=6, hour=23)  # 10h before 09:00 Monday

        cancelled = lc.cancel_booking(db, booking.id, user_id="user-1", gateway=FakeGateway(), now=now)

        assert cancelled.refund_amount == 250.0
        assert cancelled.payment_status == "paid"

    def test_no_refund_at_last_minute(self, db, monday_rule):
        booking = create(db)
        self.mark_paid(db, booking)
        now = NOW.replace(year=2030, month=1, day=7, hour=5)
        gateway = FakeGateway()

        cancelled = lc.cancel_booking(db, booking.id, user_id="user-1", gateway=gateway, now=now)

        assert cancelled.refund_amount == 0
        assert gateway.refunds == []

    def test_refund_failure_does_not_undo_cancel(self, db, monday_rule):
        booking = create(db)
        self.mark_paid(db, booking)

        cancelled = lc.cancel_booking(db, booking.id, user_id="user-1", gateway=FakeGateway(fail=True), now=NOW)

        assert cancelled.status == "cancelled"
        assert cancelled.refund_status == "failed"
        assert cancelled.payment_status == "paid"

    def test_notifies_assigned_provider(self, db, monday_rule, providers):
        booking = create(db)
        lc.assign_provider(db, booking.id, "prov-1")
        lc.cancel_booking(db, booking.id, user_id="user-1", now=NOW)
        assert ("provider", "booking:cancelled") in events_for(db, booking.id)


class TestReschedule:
    def test_moves_to_open_slot(self, db, monday_rule):
        booking = create(db)
        moved = lc.reschedule_booking(db, booking.id, "user-1", MONDAY, "11:00 AM", now=NOW)
        assert moved.time_slot == "11:00 AM"
        assert moved.slot_start_minute == 660
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE) == 0

    def test_target_full(self, db, monday_rule):
        booking = create(db)
        create(db, time_slot="10:00 AM", user_id="user-2")
        create(db, time_slot="10:00 AM", user_id="user-3")
        with pytest.raises(CapacityExceededError):
            lc.reschedule_booking(db, booking.id, "user-1", MONDAY, "10:00 AM", now=NOW)
        assert db.get(Bookings, booking.id).time_slot == "09:00 AM"

    def test_only_pending_or_confirmed(self, db, monday_rule, providers):
        booking = create(db)
        lc.assign_provider(db, booking.id, "prov-1")
        with pytest.raises(ConflictError):
            lc.reschedule_booking(db, booking.id, "user-1", MONDAY, "11:00 AM", now=NOW)


class TestAddressAndQueries:
    def test_update_address(self, db, monday_rule):
        booking = create(db)
        new_address = DeliveryAddress(**{**ADDRESS, "line1": "7 Residency Road"})
        updated = lc.update_booking_address(db, booking.id, "user-1", new_address)
        assert updated.delivery_address["line1"] == "7 Residency Road"

    def test_address_locked_after_start(self, db, monday_rule, providers):
        booking = create(db)
        lc.assign_provider(db, booking.id, "prov-1")
        lc.start_service(db, booking.id, "prov-1", booking.service_otp)
        with pytest.raises(ConflictError):
            lc.update_booking_address(db, booking.id, "user-1", DeliveryAddress(**ADDRESS))

    def test_get_booking_scoped_to_user(self, db, monday_rule):
        booking = create(db)
        assert lc.get_booking(db, booking.id, user_id="user-1").id == booking.id
        with pytest.raises(NotFoundError):
            lc.get_booking(db, booking.id, user_id="user-2")

    def test_list_user_bookings_filters(self, db, monday_rule):
        first = create(db)
        create(db, time_slot="10:00 AM")
        create(db, user_id="user-2")
        lc.cancel_booking(db, first.id, user_id="user-1", now=NOW)

        assert len(lc.list_user_bookings(db, "user-1")) == 2
        assert [b.id for b in lc.list_user_bookings(db, "user-1", status="cancelled")] == [first.id]
        assert len(lc.list_user_bookings(db, "user-1", limit=1)) == 1


def test_confirm_booking(db, monday_rule):
    booking = create(db)
    assert lc.confirm_booking(db, booking.id).status == "confirmed"
    with pytest.raises(InvalidTransitionError):
        lc.confirm_booking(db, booking.id)


def test_module_compiles_without_escape_warnings():
    source = Path(lc.__file__).read_text()
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, lc.__file__, "exec")
