"""initial schema: slot rules, blackouts, providers, bookings, slot locks, outbox

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "slot_configs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("service_id", sa.String(64)),
        sa.Column("day_of_week", sa.Integer()),
        sa.Column("start_time", sa.String(5), nullable=False, server_default=sa.text("'09:00'")),
        sa.Column("end_time", sa.String(5), nullable=False, server_default=sa.text("'18:00'")),
        sa.Column("slot_duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("gap_between_slots_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_bookings_per_slot", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("service_id", "day_of_week"),
    )

    op.create_table(
        "slot_blackout_dates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("blackout_date", sa.Date(), nullable=False),
        sa.Column("service_id", sa.String(64)),
        sa.Column("reason", sa.Text()),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("blackout_date", "service_id"),
    )
    op.create_index("ix_slot_blackout_dates_blackout_date", "slot_blackout_dates", ["blackout_date"])

    op.create_table(
        "providers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("phone", sa.Text()),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("batch_id", sa.String(36)),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("service", sa.JSON(), nullable=False),
        sa.Column("service_id", sa.String(64), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default=sa.text("'INR'")),
        sa.Column("address_id", sa.String(64)),
        sa.Column("delivery_address", sa.JSON(), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("time_slot", sa.String(16), nullable=False),
        sa.Column("slot_start_minute", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("provider_id", sa.String(64), sa.ForeignKey("providers.id", ondelete="SET NULL")),
        sa.Column("assigned_at", sa.DateTime()),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_method", sa.String(32)),
        sa.Column("payment_id", sa.String(64)),
        sa.Column("payment_order_id", sa.String(64)),
        sa.Column("promo_code", sa.String(64)),
        sa.Column("discount_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("tip_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("refund_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("refund_id", sa.String(64)),
        sa.Column("refund_status", sa.String(16), nullable=False, server_default=sa.text("'none'")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("cancelled_at", sa.DateTime()),
        sa.Column("cancelled_by", sa.String(16)),
        sa.Column("customer_notes", sa.Text()),
        sa.Column("provider_notes", sa.Text()),
        sa.Column("cancellation_reason", sa.Text()),
    )
    op.create_index("ix_bookings_batch_id", "bookings", ["batch_id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_payment_order_id", "bookings", ["payment_order_id"])
    op.create_index("ix_bookings_date_time_slot", "bookings", ["booking_date", "time_slot"])
    op.create_index("ix_bookings_date_slot_start", "bookings", ["booking_date", "slot_start_minute"])

    op.create_table(
        "slot_locks",
        sa.Column("service_id", sa.String(64), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("slot_start_minute", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("service_id", "booking_date", "slot_start_minute"),
    )

    op.create_table(
        "booking_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id", ondelete="CASCADE")),
        sa.Column("audience", sa.String(16), nullable=False),
        sa.Column("recipient_id", sa.String(64)),
        sa.Column("event", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("dispatched_at", sa.DateTime()),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text()),
    )
    op.create_index("ix_booking_events_dispatched_at", "booking_events", ["dispatched_at"])


def downgrade():
    op.drop_index("ix_booking_events_dispatched_at", table_name="booking_events")
    op.drop_table("booking_events")
    op.drop_table("slot_locks")
    for name in (
        "ix_bookings_date_slot_start",
        "ix_bookings_date_time_slot",
        "ix_bookings_payment_order_id",
        "ix_bookings_user_id",
        "ix_bookings_batch_id",
    ):
        op.drop_index(name, table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("providers")
    op.drop_index("ix_slot_blackout_dates_blackout_date", table_name="slot_blackout_dates")
    op.drop_table("slot_blackout_dates")
    op.drop_table("slot_configs")
