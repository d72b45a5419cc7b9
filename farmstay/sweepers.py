# Background sweepers that keep booking lifecycle state current without a request touching it.
# Three cadences: the due-check sweep (every few minutes), an hourly hard-expiry pass and a
# daily comprehensive pass. Each booking is committed on its own so one bad row never aborts a batch.
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import lifecycle, models
from .calculator import booking_interval
from .db import SessionLocal
from .errors import NotFoundError
from .redis_client import truthy

logger = logging.getLogger("farmstay.sweepers")

SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))
EXPIRY_SWEEP_INTERVAL_SECONDS = int(os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "3600"))
FULL_SWEEP_INTERVAL_SECONDS = int(os.getenv("FULL_SWEEP_INTERVAL_SECONDS", "86400"))

NON_TERMINAL = (lifecycle.UPCOMING, lifecycle.CURRENT)


@dataclass
class SweepResult:
    total: int = 0
    updated: int = 0
    failed: int = 0


def _run(
    select: Callable[[Session, datetime], List[models.Booking]],
    db: Optional[Session],
    now: Optional[datetime],
    label: str,
    stop_event: Optional[threading.Event] = None,
) -> SweepResult:
    """
    Apply the lifecycle transition to every selected booking.

    Semantics:
    - Idempotent across repeated runs; concurrent lazy refreshes of the same row are harmless.
    - A failing booking is rolled back, logged and skipped.
    - Stops between bookings when `stop_event` is set.
    - Accepts an optional Session; otherwise creates and cleans up its own.
    """
    created_session = False
    if db is None:
        db = SessionLocal()
        created_session = True

    result = SweepResult()
    try:
        now = now or lifecycle.local_now()
        items = select(db, now)
        result.total = len(items)
        for booking in items:
            if stop_event is not None and stop_event.is_set():
                logger.info("%s sweep interrupted after %d bookings", label, result.updated + result.failed)
                break
            try:
                if lifecycle.apply(booking, now):
                    db.commit()
                    result.updated += 1
            except Exception:
                db.rollback()
                result.failed += 1
                logger.exception("%s sweep failed for booking %s", label, booking.id)
        logger.info("%s sweep: %d/%d bookings updated, %d failed", label, result.updated, result.total, result.failed)
        return result
    finally:
        if created_session:
            db.close()


def _due(db: Session, now: datetime) -> List[models.Booking]:
    return (
        db.query(models.Booking)
        .filter(
            or_(
                models.Booking.next_status_check_at <= now,
                # Legacy rows without a scheduling hint
                (models.Booking.next_status_check_at == None)  # noqa: E711
                & models.Booking.booking_status.in_(NON_TERMINAL),
            )
        )
        .order_by(models.Booking.id)
        .all()
    )


def _overdue(db: Session, now: datetime) -> List[models.Booking]:
    items = (
        db.query(models.Booking)
        .filter(
            models.Booking.booking_status.in_(NON_TERMINAL),
            or_(
                models.Booking.booking_end_date < now,
                # Legacy rows without a stored check-out are derived below
                (models.Booking.booking_end_date == None)  # noqa: E711
                & (models.Booking.booking_date < now),
            ),
        )
        .order_by(models.Booking.id)
        .all()
    )
    return [b for b in items if booking_interval(b, b.farmhouse)[1] < now]


def _non_terminal(db: Session, now: datetime) -> List[models.Booking]:
    return (
        db.query(models.Booking)
        .filter(models.Booking.booking_status.in_(NON_TERMINAL))
        .order_by(models.Booking.id)
        .all()
    )


def sweep_due_bookings(db: Optional[Session] = None, now: Optional[datetime] = None, stop_event=None) -> SweepResult:
    """Re-derive bookings whose next_status_check_at has passed (or is unset while non-terminal)."""
    return _run(_due, db, now, "Due-status", stop_event)


def expire_overdue_bookings(db: Optional[Session] = None, now: Optional[datetime] = None, stop_event=None) -> SweepResult:
    """Safety pass: expire upcoming/current bookings whose check-out is already behind us."""
    return _run(_overdue, db, now, "Hard-expiry", stop_event)


def refresh_all_statuses(db: Optional[Session] = None, now: Optional[datetime] = None, stop_event=None) -> SweepResult:
    """Comprehensive pass over every non-expired booking, regardless of scheduling hints."""
    return _run(_non_terminal, db, now, "Comprehensive", stop_event)


def refresh_single_booking(db: Session, booking_id: int, now: Optional[datetime] = None) -> dict:
    booking = db.get(models.Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    now = now or lifecycle.local_now()
    old_status = booking.booking_status
    changed = lifecycle.apply(booking, now)
    if changed:
        db.commit()
    return {
        "booking_id": booking.id,
        "old_status": old_status,
        "new_status": booking.booking_status,
        "changed": changed,
    }


def sweeps_enabled() -> bool:
    return truthy(os.getenv("SWEEP_ENABLED", "true"))


def _start_loop(name: str, job: Callable[..., SweepResult], interval_seconds: int, stop_event: threading.Event) -> threading.Thread:
    def _loop() -> None:
        while not stop_event.is_set():
            try:
                job(stop_event=stop_event)
            except Exception:
                # Keep the worker alive on transient errors; retry on the next interval.
                logger.exception("%s crashed; retrying in %ss", name, interval_seconds)
            stop_event.wait(interval_seconds)

    t = threading.Thread(target=_loop, name=name, daemon=True)
    t.start()
    return t


def start_sweepers(stop_event: threading.Event) -> List[threading.Thread]:
    """Launch the three sweep cadences as daemon threads; they exit once `stop_event` is set."""
    return [
        _start_loop("booking-status-sweeper", sweep_due_bookings, SWEEP_INTERVAL_SECONDS, stop_event),
        _start_loop("booking-expiry-sweeper", expire_overdue_bookings, EXPIRY_SWEEP_INTERVAL_SECONDS, stop_event),
        _start_loop("booking-full-sweeper", refresh_all_statuses, FULL_SWEEP_INTERVAL_SECONDS, stop_event),
    ]
