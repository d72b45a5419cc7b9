"""Initial booking schema

Revision ID: 20260101090000
Revises:
Create Date: 2026-01-01 09:00:00

Notes:
- users: customer/admin accounts, guest customers keyed by mobile or email
- farmhouses + price_options: operating hours and one price per duration category
- bookings: check-in/check-out instants, pricing, payment ledger, lifecycle status and
  the next_status_check_at hint consumed by the status sweeper
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20260101090000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("mobile_no", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("login_type", sa.String(length=20), nullable=True),
        sa.Column("booking_history", sa.JSON(), nullable=False),
        sa.Column("is_any_farm_booked", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_mobile_no", "users", ["mobile_no"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "farmhouses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("farm_no", sa.String(length=50), nullable=True),
        sa.Column("max_persons", sa.Integer(), nullable=False),
        sa.Column("check_in_from", sa.String(length=5), nullable=False),
        sa.Column("check_out_to", sa.String(length=5), nullable=False),
        sa.Column("status", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_most_visited", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_farmhouses_id", "farmhouses", ["id"])

    op.create_table(
        "price_options",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("farmhouse_id", sa.Integer(), sa.ForeignKey("farmhouses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("max_people", sa.Integer(), nullable=False),
        sa.UniqueConstraint("farmhouse_id", "category", name="uq_price_options_farmhouse_category"),
    )
    op.create_index("ix_price_options_id", "price_options", ["id"])
    op.create_index("ix_price_options_farmhouse_id", "price_options", ["farmhouse_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("invoice_token", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_mobile", sa.String(length=32), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("farmhouse_id", sa.Integer(), sa.ForeignKey("farmhouses.id"), nullable=False),
        sa.Column("booking_date", sa.DateTime(), nullable=False),
        sa.Column("booking_end_date", sa.DateTime(), nullable=True),
        sa.Column("booking_time_from", sa.String(length=5), nullable=False),
        sa.Column("booking_time_to", sa.String(length=5), nullable=False),
        sa.Column("booking_hours", sa.Integer(), nullable=True),
        sa.Column("booking_type", sa.String(length=20), nullable=False),
        sa.Column("number_of_persons", sa.Integer(), nullable=False),
        sa.Column("original_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("final_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_logged_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="incomplete"),
        sa.Column("farm_status", sa.String(length=20), nullable=False, server_default="available"),
        sa.Column("booking_status", sa.String(length=20), nullable=False, server_default="upcoming"),
        sa.Column("next_status_check_at", sa.DateTime(), nullable=True),
        sa.Column("partial_paid_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("remaining_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("payment_history", sa.JSON(), nullable=False),
        sa.Column("booking_data", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_invoice_token", "bookings", ["invoice_token"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_farmhouse_id", "bookings", ["farmhouse_id"])
    op.create_index("ix_bookings_farmhouse_start", "bookings", ["farmhouse_id", "booking_date"])
    op.create_index("ix_bookings_payment_status", "bookings", ["payment_status"])
    op.create_index("ix_bookings_booking_status", "bookings", ["booking_status"])
    op.create_index("ix_bookings_next_status_check_at", "bookings", ["next_status_check_at"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("price_options")
    op.drop_table("farmhouses")
    op.drop_table("users")
