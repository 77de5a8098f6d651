"""Tests for capacity counting, blackouts and availability queries."""

from datetime import datetime, timedelta

import pytest

from homeserve.errors import ConflictError, NotFoundError, ValidationError
from homeserve.models import Bookings, SlotLocks
from homeserve.services.booking_lifecycle import create_booking
from homeserve.services.slots import (
    check_slot,
    count_occupied,
    count_occupied_by_slot,
    get_available_slots,
    get_available_slots_range,
    is_blacked_out,
    is_slot_available,
    lock_slot,
)
from homeserve.services.slots.availability import (
    REASON_BLACKOUT,
    REASON_FULL,
    REASON_PAST,
    REASON_UNKNOWN,
)
from homeserve.services.slots.blackouts import (
    create_blackout_date,
    delete_blackout_date,
    list_upcoming_blackout_dates,
)

from conftest import MONDAY, NOW, SERVICE, booking_data


def book(db, time_slot="09:00 AM", service_id=SERVICE, user_id="user-1"):
    return create_booking(db, user_id, booking_data(time_slot=time_slot, service_id=service_id), now=NOW)


def set_status(db, booking, status):
    booking.status = status
    db.commit()


class TestCountOccupied:
    def test_counts_pending_bookings(self, db, monday_rule):
        book(db)
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE) == 1

    def test_label_and_24h_form_match_same_slot(self, db, monday_rule):
        book(db)
        assert count_occupied(db, MONDAY, "09:00", SERVICE) == 1

    def test_provider_cancelled_still_occupies(self, db, monday_rule):
        booking = book(db)
        set_status(db, booking, "provider_cancelled")
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE) == 1

    @pytest.mark.parametrize("status", ["cancelled", "completed", "failed"])
    def test_released_statuses_free_capacity(self, db, monday_rule, status):
        booking = book(db)
        set_status(db, booking, status)
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE) == 0

    def test_filters_by_service(self, db, monday_rule):
        book(db, service_id="svc-other")
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE) == 0
        assert count_occupied(db, MONDAY, "09:00 AM") == 1

    def test_filters_by_provider(self, db, monday_rule, providers):
        booking = book(db)
        booking.provider_id = "prov-1"
        db.commit()
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE, provider_id="prov-1") == 1
        assert count_occupied(db, MONDAY, "09:00 AM", SERVICE, provider_id="prov-2") == 0

    def test_grouped_counts(self, db, monday_rule):
        book(db, "09:00 AM")
        book(db, "09:00 AM", user_id="user-2")
        book(db, "11:00 AM")
        assert count_occupied_by_slot(db, MONDAY, SERVICE) == {540: 2, 660: 1}


class TestLockSlot:
    def test_creates_and_bumps_lock_row(self, db):
        lock_slot(db, SERVICE, MONDAY, 540)
        lock_slot(db, SERVICE, MONDAY, 540)
        db.commit()

        row = db.get(SlotLocks, (SERVICE, MONDAY, 540))
        assert row.version == 2


class TestGetAvailableSlots:
    def test_empty_day(self, db, monday_rule):
        day = get_available_slots(db, MONDAY, SERVICE, now=NOW)

        assert [s.label for s in day.slots] == ["09:00 AM", "10:00 AM", "11:00 AM"]
        assert all(s.capacity_used == 0 and s.capacity_max == 2 for s in day.slots)
        assert all(s.is_available for s in day.slots)
        assert not day.is_blackout

    def test_full_slot_is_closed(self, db, monday_rule):
        book(db)
        book(db, user_id="user-2")

        slot = get_available_slots(db, MONDAY, SERVICE, now=NOW).slots[0]

        assert slot.capacity_used == 2
        assert not slot.is_available
        assert slot.unavailable_reason == REASON_FULL

    def test_started_slots_are_closed_on_same_day(self, db, monday_rule):
        now = datetime.combine(MONDAY, datetime.min.time()) + timedelta(hours=10)

        slots = get_available_slots(db, MONDAY, SERVICE, now=now).slots

        assert [s.unavailable_reason for s in slots] == [REASON_PAST, REASON_PAST, None]

    def test_past_date_rejected(self, db, monday_rule):
        with pytest.raises(ValidationError):
            get_available_slots(db, MONDAY - timedelta(days=7), SERVICE, now=NOW)

    def test_blackout_closes_every_slot(self, db, monday_rule):
        create_blackout_date(db, MONDAY, service_id=SERVICE, reason="Diwali")

        day = get_available_slots(db, MONDAY, SERVICE, now=NOW)

        assert day.is_blackout
        assert day.blackout_reason == "Diwali"
        assert len(day.slots) == 3
        assert all(not s.is_available and s.unavailable_reason == REASON_BLACKOUT for s in day.slots)

    def test_falls_back_without_config(self, db):
        day = get_available_slots(db, MONDAY, SERVICE, now=NOW)
        assert day.rule.is_fallback
        assert len(day.slots) == 9


class TestRange:
    def test_returns_each_day(self, db, monday_rule):
        days = get_available_slots_range(db, MONDAY, MONDAY + timedelta(days=2), SERVICE, now=NOW)
        assert [d.date for d in days] == [MONDAY + timedelta(days=i) for i in range(3)]

    def test_end_before_start(self, db):
        with pytest.raises(ValidationError):
            get_available_slots_range(db, MONDAY, MONDAY - timedelta(days=1), now=NOW)

    def test_span_limit(self, db):
        with pytest.raises(ValidationError):
            get_available_slots_range(db, MONDAY, MONDAY + timedelta(days=31), now=NOW)

    def test_span_of_thirty_days_is_allowed(self, db):
        days = get_available_slots_range(db, MONDAY, MONDAY + timedelta(days=30), now=NOW)
        assert len(days) == 31


class TestCheckSlot:
    def test_open_slot(self, db, monday_rule):
        result = check_slot(db, MONDAY, "10:00 AM", SERVICE, now=NOW)
        assert result.is_available
        assert result.reason is None
        assert result.label == "10:00 AM"

    def test_unknown_label(self, db, monday_rule):
        result = check_slot(db, MONDAY, "09:30 AM", SERVICE, now=NOW)
        assert not result.is_available
        assert result.reason == REASON_UNKNOWN

    def test_agrees_with_day_view(self, db, monday_rule):
        book(db)
        book(db, user_id="user-2")
        create_blackout_date(db, MONDAY + timedelta(days=7), service_id=SERVICE)

        for target in (MONDAY, MONDAY + timedelta(days=7)):
            for slot in get_available_slots(db, target, SERVICE, now=NOW).slots:
                single = check_slot(db, target, slot.label, SERVICE, now=NOW)
                assert single.is_available == slot.is_available
                assert single.reason == slot.unavailable_reason
                assert single.capacity_used == slot.capacity_used

    def test_is_slot_available(self, db, monday_rule):
        assert is_slot_available(db, MONDAY, "11:00 AM", SERVICE, now=NOW)
        assert not is_slot_available(db, MONDAY, "12:00 PM", SERVICE, now=NOW)


class TestBlackouts:
    def test_global_blackout_applies_to_every_service(self, db):
        create_blackout_date(db, MONDAY)
        assert is_blacked_out(db, SERVICE, MONDAY)
        assert is_blacked_out(db, None, MONDAY)

    def test_service_blackout_is_scoped(self, db):
        create_blackout_date(db, MONDAY, service_id=SERVICE)
        assert is_blacked_out(db, SERVICE, MONDAY)
        assert not is_blacked_out(db, "svc-other", MONDAY)
        assert not is_blacked_out(db, None, MONDAY)

    def test_duplicate_conflicts(self, db):
        create_blackout_date(db, MONDAY, service_id=SERVICE)
        with pytest.raises(ConflictError):
            create_blackout_date(db, MONDAY, service_id=SERVICE)

    def test_duplicate_global_conflicts(self, db):
        create_blackout_date(db, MONDAY)
        with pytest.raises(ConflictError):
            create_blackout_date(db, MONDAY)

    def test_delete_unknown(self, db):
        with pytest.raises(NotFoundError):
            delete_blackout_date(db, 42)

    def test_delete_reopens_day(self, db):
        row = create_blackout_date(db, MONDAY)
        delete_blackout_date(db, row.id)
        assert not is_blacked_out(db, SERVICE, MONDAY)

    def test_upcoming(self, db):
        create_blackout_date(db, MONDAY - timedelta(days=14))
        create_blackout_date(db, MONDAY, service_id=SERVICE)
        create_blackout_date(db, MONDAY + timedelta(days=1), service_id="svc-other")

        upcoming = list_upcoming_blackout_dates(db, service_id=SERVICE, today=NOW.date())

        assert [b.blackout_date for b in upcoming] == [MONDAY]


def test_bookings_keep_label(db, monday_rule):
    booking = book(db, "9:00 am")
    stored = db.get(Bookings, booking.id)
    assert stored.time_slot == "09:00 AM"
    assert stored.slot_start_minute == 540
