"""Shared test fixtures and helpers."""

from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from homeserve.database import make_engine
from homeserve.errors import DependencyError
from homeserve.models import Base, Providers, SlotConfigs
from homeserve.schemas.bookings import BookingCreate

# 2030-01-01 is a Tuesday; 2030-01-07 the following Monday
NOW = datetime(2030, 1, 1, 8, 0)
MONDAY = date(2030, 1, 7)
SERVICE = "svc-cleaning"

ADDRESS = {
    "full_name": "Asha Rao",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "pincode": "560001",
}


class FakeGateway:
    """In-memory PaymentGateway."""

    def __init__(self, verify: bool = True, fail: bool = False):
        self.verify = verify
        self.fail = fail
        self.orders: list[tuple] = []
        self.refunds: list[tuple] = []

    def create_order(self, amount, receipt, currency="INR"):
        if self.fail:
            raise DependencyError("Payment gateway is unavailable, please try again")
        self.orders.append((amount, receipt, currency))
        return f"order_{len(self.orders)}"

    def verify_signature(self, order_id, payment_id, signature):
        if self.fail:
            raise DependencyError("Payment gateway is unavailable, please try again")
        return self.verify

    def refund(self, payment_id, amount=None):
        if self.fail:
            raise DependencyError("Payment gateway is unavailable, please try again")
        self.refunds.append((payment_id, amount))
        return f"rfnd_{len(self.refunds)}"


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def redis():
    return MagicMock()


@pytest.fixture
def providers(db):
    db.add_all([
        Providers(id="prov-1", name="Ravi", status="approved"),
        Providers(id="prov-2", name="Meena", status="active"),
        Providers(id="prov-pending", name="New", status="pending"),
    ])
    db.commit()


@pytest.fixture
def monday_rule(db):
    """Monday 09:00-12:00, hourly, capacity 2 for SERVICE."""
    return add_rule(db, service_id=SERVICE, day_of_week=1, start_time="09:00", end_time="12:00",
                    slot_duration_minutes=60, max_bookings_per_slot=2)


def add_rule(db, **fields) -> SlotConfigs:
    values = {
        "service_id": None,
        "day_of_week": None,
        "start_time": "09:00",
        "end_time": "18:00",
        "slot_duration_minutes": 60,
        "gap_between_slots_minutes": 0,
        "max_bookings_per_slot": 5,
        "is_active": True,
    }
    values.update(fields)
    row = SlotConfigs(**values)
    db.add(row)
    db.commit()
    return row


def service_snapshot(service_id: str = SERVICE, price: float = 500.0, quantity: int = 1) -> dict:
    return {
        "service_id": service_id,
        "service_name": f"Service {service_id}",
        "quantity": quantity,
        "price": price,
        "category": "home",
    }


def booking_data(
    booking_date: date = MONDAY,
    time_slot: str = "09:00 AM",
    service_id: str = SERVICE,
    payment_method: str | None = "cod",
    **extra,
) -> BookingCreate:
    service = service_snapshot(service_id)
    return BookingCreate(
        service=service,
        total_amount=service["price"] * service["quantity"],
        delivery_address=ADDRESS,
        booking_date=booking_date,
        time_slot=time_slot,
        payment_method=payment_method,
        **extra,
    )


def upcoming(day_index: int, weeks_ahead: int = 1) -> date:
    """A real future date with the given day index (0 = Sunday)."""
    today = date.today()
    delta = (day_index - today.isoweekday() % 7) % 7
    return today + timedelta(days=delta + 7 * weeks_ahead)
