# Booking lifecycle state machine: upcoming -> current -> expired, driven by wall-clock time.
# The transition table lives in evaluate(); the lazy read path and the sweepers only decide
# when to call it and whether to persist the result.
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .calculator import booking_interval

logger = logging.getLogger("farmstay.lifecycle")

# Wall-clock zone of the farmhouses; stored booking instants are naive times in this zone.
FARMSTAY_TIMEZONE = os.getenv("FARMSTAY_TIMEZONE", "Asia/Kolkata")

UPCOMING = "upcoming"
CURRENT = "current"
EXPIRED = "expired"


def local_now() -> datetime:
    return datetime.now(ZoneInfo(FARMSTAY_TIMEZONE)).replace(tzinfo=None, microsecond=0)


@dataclass(frozen=True)
class LifecycleState:
    booking_status: str
    farm_status: str
    next_status_check_at: Optional[datetime]


def derive_status(check_in: datetime, check_out: datetime, now: datetime) -> str:
    if now < check_in:
        return UPCOMING
    if now <= check_out:
        return CURRENT
    return EXPIRED


def next_check_for(status: str, check_in: datetime, check_out: datetime) -> Optional[datetime]:
    if status == UPCOMING:
        return check_in
    if status == CURRENT:
        return check_out
    return None


def evaluate(
    check_in: datetime,
    check_out: datetime,
    now: datetime,
    farm_status: str,
    payment_status: str = "incomplete",
) -> LifecycleState:
    """
    Pure transition function.

    Occupancy follows the lifecycle: a current booking marks the farm unavailable,
    an expired one releases it. Cancelled bookings never claim the farm.
    """
    status = derive_status(check_in, check_out, now)
    if status == CURRENT and farm_status == "available" and payment_status != "cancel":
        farm_status = "unavailable"
    elif status == EXPIRED and farm_status == "unavailable":
        farm_status = "available"
    return LifecycleState(status, farm_status, next_check_for(status, check_in, check_out))


def is_due(booking: models.Booking, now: datetime) -> bool:
    if booking.next_status_check_at is None:
        # Legacy rows without a scheduling hint are re-derived until they reach the terminal state
        return booking.booking_status != EXPIRED
    return booking.next_status_check_at <= now


def apply(booking: models.Booking, now: datetime, farmhouse: Optional[models.Farmhouse] = None) -> bool:
    """Re-derive the lifecycle fields on the ORM row in memory. Returns True if anything changed."""
    check_in, check_out = booking_interval(booking, farmhouse or booking.farmhouse)
    state = evaluate(check_in, check_out, now, booking.farm_status, booking.payment_status)
    changed = (
        state.booking_status != booking.booking_status
        or state.farm_status != booking.farm_status
        or state.next_status_check_at != booking.next_status_check_at
    )
    if changed:
        if state.booking_status != booking.booking_status:
            logger.info(
                "Booking %s status %s -> %s (farm %s -> %s)",
                booking.id, booking.booking_status, state.booking_status,
                booking.farm_status, state.farm_status,
            )
        booking.booking_status = state.booking_status
        booking.farm_status = state.farm_status
        booking.next_status_check_at = state.next_status_check_at
    return changed


def refresh_bookings(db: Session, bookings: Iterable[models.Booking], now: Optional[datetime] = None) -> List[models.Booking]:
    """
    Lazy path: re-derive every due booking before it is served.

    A failed write is logged and rolled back; the rows keep their freshly derived
    values for this response and the next read derives them again identically.
    """
    now = now or local_now()
    items = list(bookings)
    dirty = [b for b in items if is_due(b, now) and apply(b, now)]
    if dirty:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            logger.warning("Could not persist lazy status refresh for %d bookings: %s", len(dirty), exc)
            snapshots = [(b, b.booking_status, b.farm_status, b.next_status_check_at) for b in dirty]
            db.rollback()
            for b, status, farm_status, next_check in snapshots:
                b.booking_status = status
                b.farm_status = farm_status
                b.next_status_check_at = next_check
    return items
