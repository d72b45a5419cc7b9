# Availability / overlap checker.
# A candidate [check_in, check_out) is admissible only if it does not intersect the derived
# interval of any non-cancelled booking of the same farmhouse. Touching endpoints are allowed.
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from . import models
from .calculator import booking_interval, parse_category


@dataclass(frozen=True)
class Availability:
    admissible: bool
    conflicting_booking_id: Optional[int] = None


ADMISSIBLE = Availability(admissible=True)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def active_bookings_query(db: Session, farmhouse_id: Optional[int] = None):
    q = db.query(models.Booking).filter(models.Booking.payment_status != "cancel")
    if farmhouse_id is not None:
        q = q.filter(models.Booking.farmhouse_id == farmhouse_id)
    return q


def check_availability(
    db: Session,
    farmhouse: models.Farmhouse,
    check_in: datetime,
    check_out: datetime,
    exclude_booking_id: Optional[int] = None,
) -> Availability:
    """
    Compare the candidate interval with every non-cancelled booking of the farmhouse.

    Must run inside farmhouse_booking_lock together with the insert/update it guards.
    """
    q = active_bookings_query(db, farmhouse.id)
    if exclude_booking_id is not None:
        q = q.filter(models.Booking.id != exclude_booking_id)
    # Only rows starting before the candidate ends can intersect it
    items = q.filter(models.Booking.booking_date < check_out).order_by(models.Booking.booking_date).all()
    for existing in items:
        start, end = booking_interval(existing, farmhouse)
        if intervals_overlap(check_in, check_out, start, end):
            return Availability(admissible=False, conflicting_booking_id=existing.id)
    return ADMISSIBLE


def _blocks_day(start: datetime, end: datetime, day: date, now: datetime) -> bool:
    if start.date() == day:
        return True
    if start.date() < day < end.date():
        return True
    if start.date() < day and end.date() == day:
        # Checkout day: still occupied until the guest has checked out
        return now < end
    return False


def booked_farmhouse_ids(db: Session, day: date, now: datetime) -> Set[int]:
    day_start = datetime.combine(day, datetime.min.time())
    next_day = day_start + timedelta(days=1)
    # Bookings starting on the day, or earlier ones that may still be running into it
    candidates = (
        active_bookings_query(db)
        .filter(models.Booking.booking_date < next_day)
        .filter(
            (models.Booking.booking_date >= day_start)
            | (models.Booking.booking_end_date == None)  # noqa: E711
            | (models.Booking.booking_end_date >= day_start)
        )
        .all()
    )
    farmhouses: Dict[int, models.Farmhouse] = {}
    booked: Set[int] = set()
    for b in candidates:
        if b.farmhouse_id in booked:
            continue
        fh = farmhouses.setdefault(b.farmhouse_id, b.farmhouse)
        start, end = booking_interval(b, fh)
        if _blocks_day(start, end, day, now):
            booked.add(b.farmhouse_id)
    return booked


def list_available_farmhouses(
    db: Session,
    day: date,
    now: datetime,
    category=None,
) -> Tuple[List[models.Farmhouse], int]:
    """Active farmhouses with no booking occupying `day`. Returns (available, total_active)."""
    if category is not None:
        parse_category(category)
    farms = (
        db.query(models.Farmhouse)
        .filter(models.Farmhouse.status == True)  # noqa: E712
        .order_by(models.Farmhouse.id)
        .all()
    )
    booked = booked_farmhouse_ids(db, day, now)
    return [f for f in farms if f.id not in booked], len(farms)
