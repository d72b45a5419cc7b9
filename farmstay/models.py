# SQLAlchemy ORM models for the booking domain (users, farmhouses, price options, bookings).
# Keep business logic out of models; time math, lifecycle and pricing live in dedicated modules.
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_mixin, relationship

from .db import Base


@declarative_mixin
class TimestampMixin:
    """Common timestamps automatically managed by the database.

    - created_at: set on insert
    - updated_at: set on insert and updated on each modification
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base, TimestampMixin):
    """Account that owns bookings.

    Roles:
    - admin: manages farmhouses and every booking
    - customer: books farmhouses; guest customers are created on the fly from walk-in details
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, unique=True, index=True)
    mobile_no = Column(String(32), nullable=True, unique=True, index=True)
    role = Column(String(20), nullable=False, default="customer", index=True)  # "admin" or "customer"
    login_type = Column(String(20), nullable=True)  # "phone" or "email"
    # append-only list of {farmhouse_id, booking_id, booking_date, booking_type, rent, booked_at}
    booking_history = Column(JSON, nullable=False, default=list)
    is_any_farm_booked = Column(Boolean, nullable=False, default=False)


class Farmhouse(Base, TimestampMixin):
    """Bookable farmhouse with its default operating hours."""
    __tablename__ = "farmhouses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    farm_no = Column(String(50), nullable=True)
    max_persons = Column(Integer, nullable=False)
    check_in_from = Column(String(5), nullable=False)  # HH:MM
    check_out_to = Column(String(5), nullable=False)  # HH:MM
    status = Column(Boolean, nullable=False, default=True)
    # derived: recomputed after every booking mutation
    is_most_visited = Column(Boolean, nullable=False, default=False)

    price_options = relationship(
        "PriceOption",
        back_populates="farmhouse",
        cascade="all, delete-orphan",
        order_by="PriceOption.id",
    )


class PriceOption(Base):
    """Price and head-count cap for one duration category of a farmhouse."""
    __tablename__ = "price_options"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    farmhouse_id = Column(Integer, ForeignKey("farmhouses.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(20), nullable=False)  # REGULAR_12HR | REGULAR_24HR | WEEKEND_12HR | WEEKEND_24HR
    price = Column(Numeric(10, 2), nullable=False)
    max_people = Column(Integer, nullable=False)

    farmhouse = relationship("Farmhouse", back_populates="price_options")

    __table_args__ = (
        UniqueConstraint("farmhouse_id", "category", name="uq_price_options_farmhouse_category"),
    )


class Booking(Base, TimestampMixin):
    """Reservation of a farmhouse for one duration category.

    Two independent state axes:
    - payment_status: incomplete | partial | paid | cancel (changed by requests)
    - booking_status: upcoming -> current -> expired (derived from wall-clock time)

    booking_date / booking_end_date are naive local check-in / check-out instants.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    invoice_token = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)
    customer_mobile = Column(String(32), nullable=True)
    customer_email = Column(String(255), nullable=True)
    farmhouse_id = Column(Integer, ForeignKey("farmhouses.id"), nullable=False, index=True)

    booking_date = Column(DateTime, nullable=False)
    booking_end_date = Column(DateTime, nullable=True)
    booking_time_from = Column(String(5), nullable=False)
    booking_time_to = Column(String(5), nullable=False)
    booking_hours = Column(Integer, nullable=True)
    booking_type = Column(String(20), nullable=False)

    number_of_persons = Column(Integer, nullable=False)
    original_price = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    final_price = Column(Numeric(10, 2), nullable=False)

    is_logged_in = Column(Boolean, nullable=False, default=False)
    payment_status = Column(String(20), nullable=False, default="incomplete")
    farm_status = Column(String(20), nullable=False, default="available")
    booking_status = Column(String(20), nullable=False, default="upcoming")
    next_status_check_at = Column(DateTime, nullable=True)

    partial_paid_amount = Column(Numeric(10, 2), nullable=True)
    remaining_amount = Column(Numeric(10, 2), nullable=True)
    payment_history = Column(JSON, nullable=False, default=list)
    booking_data = Column(JSON, nullable=True)

    user = relationship("User")
    farmhouse = relationship("Farmhouse")

    # Indexed access patterns: overlap checks per farmhouse, payment filters, and the status sweep
    __table_args__ = (
        Index("ix_bookings_farmhouse_start", "farmhouse_id", "booking_date"),
        Index("ix_bookings_payment_status", "payment_status"),
        Index("ix_bookings_booking_status", "booking_status"),
        Index("ix_bookings_next_status_check_at", "next_status_check_at"),
    )
