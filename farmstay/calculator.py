# Time & price calculator: pure functions, no I/O.
# Derives check-in/check-out instants, billable hours, discounts and prices from booking
# inputs and farmhouse configuration. All instants are naive local date-times.
from __future__ import annotations

import time as _time
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple
from uuid import uuid4

from .errors import CapacityExceededError, PriceNotFoundError, ValidationError


class DurationCategory(str, Enum):
    """Booking length plus pricing tier."""

    REGULAR_12HR = "REGULAR_12HR"
    REGULAR_24HR = "REGULAR_24HR"
    WEEKEND_12HR = "WEEKEND_12HR"
    WEEKEND_24HR = "WEEKEND_24HR"

    @property
    def kind(self) -> str:
        return self.value.split("_", 1)[0]

    @property
    def hours(self) -> int:
        return 24 if self.value.endswith("24HR") else 12


# Flat incentive for logged-in customers: (lower inclusive, upper exclusive, amount)
DISCOUNT_STEPS: Tuple[Tuple[Decimal, Optional[Decimal], Decimal], ...] = (
    (Decimal("1000"), Decimal("3000"), Decimal("100")),
    (Decimal("3000"), Decimal("5000"), Decimal("200")),
    (Decimal("5000"), Decimal("8000"), Decimal("300")),
    (Decimal("8000"), None, Decimal("499")),
)

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS)


def parse_category(value) -> DurationCategory:
    if isinstance(value, DurationCategory):
        return value
    try:
        return DurationCategory(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid booking type: {value}") from None


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" (seconds tolerated, as returned by TIME columns)."""
    parts = str(value or "").strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValidationError("Invalid booking time format. Use HH:MM format")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValidationError("Invalid booking time format. Use HH:MM format")
    return time(hours, minutes)


def format_hhmm(value: datetime) -> str:
    return value.strftime("%H:%M")


def derive_check_in(day: date, check_in_from: str, override: Optional[str] = None) -> datetime:
    """Combine the calendar date with the farmhouse check-in time, or the caller's override."""
    return datetime.combine(day, parse_hhmm(override or check_in_from))


def derive_check_out(check_in: datetime, category, check_out_to: str) -> datetime:
    """
    Check-out instant for a booking starting at `check_in`.

    - 24HR: next calendar day at the farmhouse check-out time.
    - 12HR: same calendar day at the farmhouse check-out time, rolled to the next day
      when that time-of-day is not after the check-in time-of-day.
    Either way the stay never outlasts the category's hours.
    """
    category = parse_category(category)
    out_time = parse_hhmm(check_out_to)
    if category.hours == 24:
        candidate = datetime.combine(check_in.date() + timedelta(days=1), out_time)
    else:
        candidate = datetime.combine(check_in.date(), out_time)
        if out_time <= check_in.time():
            candidate += timedelta(days=1)
    return min(candidate, check_in + timedelta(hours=category.hours))


def hours_for_category(category) -> int:
    return parse_category(category).hours


def compute_discount(price, is_logged_in: bool) -> Decimal:
    if not is_logged_in:
        return Decimal("0.00")
    amount = to_money(price)
    for lower, upper, discount in DISCOUNT_STEPS:
        if amount >= lower and (upper is None or amount < upper):
            return to_money(discount)
    return Decimal("0.00")


def resolve_price(option, category, number_of_persons: int) -> Decimal:
    """Price of `option` (a PriceOption row or None) after the head-count check."""
    category = parse_category(category)
    if option is None:
        raise PriceNotFoundError(f"Price option not found for booking type: {category.value}")
    if number_of_persons > option.max_people:
        raise CapacityExceededError(f"Maximum {option.max_people} persons allowed for this booking type")
    return to_money(option.price)


def booking_interval(booking, farmhouse=None) -> Tuple[datetime, datetime]:
    """
    Derived [check-in, check-out) for a persisted booking.

    Rows written by this service carry both instants. Legacy rows may lack
    booking_end_date or store a midnight check-in; those fall back to the
    stored HH:MM strings and then to the farmhouse defaults.
    """
    check_in = booking.booking_date
    if check_in.time() == time(0, 0) and booking.booking_time_from:
        check_in = derive_check_in(check_in.date(), booking.booking_time_from)
    if booking.booking_end_date is not None and booking.booking_end_date > check_in:
        return check_in, booking.booking_end_date
    check_out_to = booking.booking_time_to or (farmhouse.check_out_to if farmhouse is not None else None)
    if not check_out_to:
        return check_in, check_in + timedelta(hours=hours_for_category(booking.booking_type))
    return check_in, derive_check_out(check_in, booking.booking_type, check_out_to)


def date_hints(check_in: datetime, check_out: datetime, category) -> Tuple[List[date], List[date]]:
    """
    (booked_dates, available_dates) reported back on creation; not stored.

    The start day is booked. A 24HR stay frees its checkout day; a 12HR stay frees the next day.
    """
    start = check_in.date()
    if parse_category(category).hours == 24:
        end = check_out.date()
        return [start], ([end] if end != start else [])
    return [start], [start + timedelta(days=1)]


def generate_invoice_token() -> str:
    return f"INV-{int(_time.time() * 1000)}-{uuid4().hex[:16]}"
