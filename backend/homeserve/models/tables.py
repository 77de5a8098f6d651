import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


def _uuid() -> str:
    return str(uuid.uuid4())


class SlotConfigs(Base):
    __tablename__ = 'slot_configs'
    __table_args__ = (
        UniqueConstraint('service_id', 'day_of_week'),
    )

    id = Column(Integer, primary_key=True)
    service_id = Column(String(64))  # NULL = every service
    day_of_week = Column(Integer)  # 0 = Sunday … 6 = Saturday, NULL = every day
    start_time = Column(String(5), nullable=False, server_default=text("'09:00'"))
    end_time = Column(String(5), nullable=False, server_default=text("'18:00'"))
    slot_duration_minutes = Column(Integer, nullable=False, server_default=text('60'))
    gap_between_slots_minutes = Column(Integer, nullable=False, server_default=text('0'))
    max_bookings_per_slot = Column(Integer, nullable=False, server_default=text('5'))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)


class SlotBlackoutDates(Base):
    __tablename__ = 'slot_blackout_dates'
    __table_args__ = (
        UniqueConstraint('blackout_date', 'service_id'),
    )

    id = Column(Integer, primary_key=True)
    blackout_date = Column(Date, nullable=False, index=True)
    service_id = Column(String(64))  # NULL = global blackout
    reason = Column(Text)
    created_by = Column(String(64))
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Providers(Base):
    __tablename__ = 'providers'

    id = Column(String(64), primary_key=True, default=_uuid)
    name = Column(Text, nullable=False)
    phone = Column(Text)
    status = Column(String(32), nullable=False, server_default=text("'pending'"))
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    bookings = relationship('Bookings', back_populates='provider')


class Bookings(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        Index('ix_bookings_date_time_slot', 'booking_date', 'time_slot'),
        Index('ix_bookings_date_slot_start', 'booking_date', 'slot_start_minute'),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    batch_id = Column(String(36), index=True)
    user_id = Column(String(64), nullable=False, index=True)

    # snapshot taken at booking time: service_id, service_name, quantity, price, category, image_url
    service = Column(JSON, nullable=False)
    service_id = Column(String(64), nullable=False)

    total_amount = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False, server_default=text("'INR'"))
    address_id = Column(String(64))
    delivery_address = Column(JSON, nullable=False)

    booking_date = Column(Date, nullable=False)
    time_slot = Column(String(16), nullable=False)  # display label, e.g. "09:00 AM"
    slot_start_minute = Column(Integer, nullable=False)  # structural slot key

    status = Column(String(32), nullable=False, server_default=text("'pending'"))
    provider_id = Column(ForeignKey('providers.id', ondelete='SET NULL'))
    assigned_at = Column(DateTime)

    # handed to the customer; the provider submits it to start the job
    service_otp = Column(String(6))
    otp_verified_at = Column(DateTime)
    started_at = Column(DateTime)

    payment_status = Column(String(16), nullable=False, server_default=text("'pending'"))
    payment_method = Column(String(32))
    payment_id = Column(String(64))
    payment_order_id = Column(String(64), index=True)
    promo_code = Column(String(64))
    discount_amount = Column(Float, nullable=False, server_default=text('0'))
    tip_amount = Column(Float, nullable=False, server_default=text('0'))

    refund_amount = Column(Float, nullable=False, server_default=text('0'))
    refund_id = Column(String(64))
    refund_status = Column(String(16), nullable=False, server_default=text("'none'"))

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String(16))

    customer_notes = Column(Text)
    provider_notes = Column(Text)
    cancellation_reason = Column(Text)

    # bumped on every UPDATE; a write against a stale version fails
    version = Column(Integer, nullable=False, server_default=text('1'))

    provider = relationship('Providers', back_populates='bookings')
    events = relationship('BookingEvents', back_populates='booking')

    __mapper_args__ = {"version_id_col": version}


class SlotLocks(Base):
    """One row per (service, date, slot); locked while a booking is inserted."""
    __tablename__ = 'slot_locks'
    __table_args__ = (
        PrimaryKeyConstraint('service_id', 'booking_date', 'slot_start_minute'),
    )

    service_id = Column(String(64), nullable=False)
    booking_date = Column(Date, nullable=False)
    slot_start_minute = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False, server_default=text('0'))


class BookingEvents(Base):
    """Outbox of notifications, written in the same transaction as the booking change."""
    __tablename__ = 'booking_events'

    id = Column(Integer, primary_key=True)
    booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'))
    audience = Column(String(16), nullable=False)  # user / provider / admins
    recipient_id = Column(String(64))
    event = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    dispatched_at = Column(DateTime, index=True)
    claimed_at = Column(DateTime)  # set by the drainer delivering the row
    attempts = Column(Integer, nullable=False, server_default=text('0'))
    last_error = Column(Text)

    booking = relationship('Bookings', back_populates='events')
