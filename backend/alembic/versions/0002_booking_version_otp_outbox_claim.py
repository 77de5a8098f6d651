"""booking row version, service OTP, outbox claim lease

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-20
"""
from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("bookings") as batch:
        batch.add_column(sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")))
        batch.add_column(sa.Column("service_otp", sa.String(6)))
        batch.add_column(sa.Column("otp_verified_at", sa.DateTime()))
        batch.add_column(sa.Column("started_at", sa.DateTime()))

    with op.batch_alter_table("booking_events") as batch:
        batch.add_column(sa.Column("claimed_at", sa.DateTime()))


def downgrade():
    with op.batch_alter_table("booking_events") as batch:
        batch.drop_column("claimed_at")

    with op.batch_alter_table("bookings") as batch:
        batch.drop_column("started_at")
        batch.drop_column("otp_verified_at")
        batch.drop_column("service_otp")
        batch.drop_column("version")
