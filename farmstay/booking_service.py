# Booking aggregate service: the failure boundary for booking operations.
# Composes the calculator, the overlap checker, the lifecycle state machine and the payment
# ledger; raises typed BookingErrors that the API layer renders into the response envelope.
from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from . import lifecycle, ledger
from .availability import active_bookings_query, check_availability, list_available_farmhouses
from .calculator import (
    booking_interval,
    compute_discount,
    date_hints,
    derive_check_in,
    derive_check_out,
    format_hhmm,
    generate_invoice_token,
    hours_for_category,
    parse_category,
    resolve_price,
    to_money,
)
from .errors import (
    BookingConflictError,
    BookingError,
    CapacityExceededError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .locks import farmhouse_booking_lock

logger = logging.getLogger("farmstay.bookings")


# ----------------
# Lookups
# ----------------
def get_farmhouse(db: Session, farmhouse_id: int) -> models.Farmhouse:
    farmhouse = db.get(models.Farmhouse, farmhouse_id)
    if not farmhouse:
        raise NotFoundError("Farmhouse not found")
    return farmhouse


def _get_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _price_option(db: Session, farmhouse_id: int, category) -> Optional[models.PriceOption]:
    return (
        db.query(models.PriceOption)
        .filter(
            models.PriceOption.farmhouse_id == farmhouse_id,
            models.PriceOption.category == parse_category(category).value,
        )
        .first()
    )


def _check_capacity(farmhouse: models.Farmhouse, number_of_persons: int) -> None:
    if number_of_persons > farmhouse.max_persons:
        raise CapacityExceededError(f"Maximum {farmhouse.max_persons} persons allowed at this farmhouse")


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise PersistenceError(f"Failed to {action}") from exc


# ----------------
# Identity
# ----------------
def find_or_create_guest(
    db: Session,
    customer_name: str,
    customer_mobile: Optional[str] = None,
    customer_email: Optional[str] = None,
) -> models.User:
    """Match a walk-in customer by mobile, then email; create a customer account otherwise."""
    if not customer_mobile and not customer_email:
        raise ValidationError("At least one of mobile or email is required")

    user = None
    if customer_mobile:
        user = db.query(models.User).filter(models.User.mobile_no == customer_mobile).first()
    if user is None and customer_email:
        user = db.query(models.User).filter(models.User.email == customer_email).first()

    if user is None:
        user = models.User(
            name=customer_name,
            mobile_no=customer_mobile,
            email=customer_email,
            role="customer",
            login_type="phone" if customer_mobile else "email",
            booking_history=[],
        )
        db.add(user)
        db.flush()
    elif customer_name and not user.name:
        user.name = customer_name
    return user


def resolve_identity(
    db: Session,
    payload: schemas.BookingCreate,
    request_user: Optional[models.User] = None,
) -> Tuple[models.User, bool]:
    """
    Acting user for a new booking and whether it counts as logged in.

    Explicit user_id, then the authenticated caller, then a guest account keyed by
    mobile/email. An explicit is_logged_in on the payload overrides the derived flag.
    """
    if payload.user_id is not None:
        user = db.get(models.User, payload.user_id)
        if not user:
            raise NotFoundError("User not found")
        logged_in = True
    elif request_user is not None:
        user, logged_in = request_user, True
    else:
        if not payload.customer_name or not (payload.customer_mobile or payload.customer_email):
            raise ValidationError("Customer name and at least one of mobile/email are required")
        user = find_or_create_guest(db, payload.customer_name, payload.customer_mobile, payload.customer_email)
        logged_in = False

    if payload.is_logged_in is not None:
        logged_in = payload.is_logged_in
    return user, logged_in


# ----------------
# Best-effort derived state
# ----------------
def recompute_most_visited(db: Session) -> Optional[int]:
    """
    Flag the farmhouse with the strictly highest non-cancelled booking count.

    Ties go to the lowest id. Failures are logged and swallowed.
    """
    try:
        counts = dict(
            active_bookings_query(db)
            .with_entities(models.Booking.farmhouse_id, func.count(models.Booking.id))
            .group_by(models.Booking.farmhouse_id)
            .all()
        )
        farms = db.query(models.Farmhouse).order_by(models.Farmhouse.id).all()
        top_id, top_count = None, 0
        for farm in farms:
            count = counts.get(farm.id, 0)
            if count > top_count:
                top_id, top_count = farm.id, count
        for farm in farms:
            flag = farm.id == top_id
            if farm.is_most_visited != flag:
                farm.is_most_visited = flag
        db.commit()
        return top_id
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not recompute most visited farmhouse: %s", exc)
        return None


def append_user_booking_history(db: Session, user_id: Optional[int], booking: models.Booking) -> None:
    if user_id is None:
        return
    try:
        user = db.get(models.User, user_id)
        if not user:
            return
        entry = {
            "booking_id": booking.id,
            "farmhouse_id": booking.farmhouse_id,
            "booking_date": booking.booking_date.isoformat(),
            "booking_type": booking.booking_type,
            "rent": str(to_money(booking.final_price)),
            "booked_at": lifecycle.local_now().isoformat(),
        }
        user.booking_history = [*(user.booking_history or []), entry]
        user.is_any_farm_booked = True
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not update booking history for user %s: %s", user_id, exc)


# ----------------
# Commands
# ----------------
def create_booking(
    db: Session,
    payload: schemas.BookingCreate,
    request_user: Optional[models.User] = None,
    now: Optional[datetime] = None,
) -> models.Booking:
    now = now or lifecycle.local_now()
    category = parse_category(payload.booking_type)

    farmhouse = get_farmhouse(db, payload.farmhouse_id)
    if not farmhouse.status:
        raise ValidationError("Farmhouse is not available")
    _check_capacity(farmhouse, payload.number_of_persons)

    check_in = derive_check_in(payload.booking_date, farmhouse.check_in_from, payload.booking_time_from)
    check_out = derive_check_out(check_in, category, farmhouse.check_out_to)

    try:
        # Identity resolution may insert a guest account, so it runs inside the lock with the insert
        with farmhouse_booking_lock(db, farmhouse.id):
            user, logged_in = resolve_identity(db, payload, request_user)

            availability = check_availability(db, farmhouse, check_in, check_out)
            if not availability.admissible:
                raise BookingConflictError("This date is already booked", availability.conflicting_booking_id)

            if payload.original_price:
                original_price = to_money(payload.original_price)
            else:
                option = _price_option(db, farmhouse.id, category)
                original_price = resolve_price(option, category, payload.number_of_persons)
            discount = compute_discount(original_price, logged_in)
            final_price = original_price - discount

            paid = remaining = None
            if payload.payment_status == "partial":
                paid, remaining = ledger.validate_partial(final_price, payload.paid_amount, payload.remaining_amount)

            farm_status = ledger.farm_status_for_payment(payload.payment_status, payload.farm_status)
            state = lifecycle.evaluate(check_in, check_out, now, farm_status, payload.payment_status)

            booking = models.Booking(
                invoice_token=generate_invoice_token(),
                user_id=user.id,
                farmhouse_id=farmhouse.id,
                customer_name=None if logged_in else payload.customer_name,
                customer_mobile=None if logged_in else payload.customer_mobile,
                customer_email=None if logged_in else payload.customer_email,
                booking_date=check_in,
                booking_end_date=check_out,
                booking_time_from=format_hhmm(check_in),
                booking_time_to=format_hhmm(check_out),
                booking_hours=category.hours,
                booking_type=category.value,
                number_of_persons=payload.number_of_persons,
                original_price=original_price,
                discount_amount=discount,
                final_price=final_price,
                is_logged_in=logged_in,
                payment_status=payload.payment_status,
                farm_status=state.farm_status,
                booking_status=state.booking_status,
                next_status_check_at=state.next_status_check_at,
                partial_paid_amount=paid,
                remaining_amount=remaining,
                payment_history=[],
                booking_data=payload.booking_data,
            )
            ledger.record_transition(
                booking,
                payload.payment_status,
                at=now,
                amount=final_price if payload.payment_status == "paid" else paid,
                partial={"paid": paid, "remaining": remaining} if paid is not None else None,
                notes="Booking created",
            )
            db.add(booking)
            _commit(db, "create booking")
    except BookingError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to create booking")
        raise PersistenceError("Failed to create booking") from exc

    db.refresh(booking)
    logger.info(
        "Created booking %s for farmhouse %s (%s -> %s, %s)",
        booking.id, farmhouse.id, check_in, check_out, category.value,
    )
    append_user_booking_history(db, booking.user_id, booking)
    recompute_most_visited(db)
    return booking


def _apply_payment_fields(booking: models.Booking, status: str, paid=None, remaining=None) -> None:
    booking.payment_status = status
    if status == "partial":
        booking.partial_paid_amount, booking.remaining_amount = paid, remaining
    else:
        booking.partial_paid_amount = None
        booking.remaining_amount = None
    booking.farm_status = ledger.farm_status_for_payment(status, booking.farm_status)


def update_payment_status(
    db: Session,
    booking_id: int,
    payload: schemas.PaymentStatusUpdate,
    now: Optional[datetime] = None,
) -> models.Booking:
    now = now or lifecycle.local_now()
    booking = _get_booking(db, booking_id)
    old_status = booking.payment_status
    new_status = payload.payment_status

    paid = remaining = None
    if new_status == "partial":
        paid, remaining = ledger.validate_partial(booking.final_price, payload.paid_amount, payload.remaining_amount)

    try:
        with farmhouse_booking_lock(db, booking.farmhouse_id):
            if old_status == "cancel" and new_status != "cancel":
                # Reinstating a cancelled booking claims its interval again
                check_in, check_out = booking_interval(booking, booking.farmhouse)
                availability = check_availability(
                    db, booking.farmhouse, check_in, check_out, exclude_booking_id=booking.id
                )
                if not availability.admissible:
                    raise BookingConflictError("This date is already booked", availability.conflicting_booking_id)

            _apply_payment_fields(booking, new_status, paid, remaining)
            if new_status == "paid":
                amount = booking.final_price
            else:
                amount = paid
            ledger.record_transition(
                booking,
                new_status,
                at=now,
                amount=amount,
                partial={"paid": paid, "remaining": remaining} if paid is not None else None,
                notes=payload.notes,
                from_status=old_status,
            )
            lifecycle.apply(booking, now)
            _commit(db, "update payment status")
    except BookingError:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info("Booking %s payment %s -> %s", booking.id, old_status, new_status)
    if (old_status == "cancel") != (new_status == "cancel"):
        recompute_most_visited(db)
    return booking


def update_booking(
    db: Session,
    booking_id: int,
    payload: schemas.BookingUpdate,
    now: Optional[datetime] = None,
) -> models.Booking:
    """
    Admin edit. Only supplied fields change.

    Rescheduling re-derives the interval and re-runs the overlap check; price or
    login changes recompute discount and final price, keeping partial payments consistent.
    """
    now = now or lifecycle.local_now()
    booking = _get_booking(db, booking_id)
    farmhouse = booking.farmhouse
    # Explicit nulls mean "leave unchanged"
    data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}

    try:
        with farmhouse_booking_lock(db, booking.farmhouse_id):
            category = parse_category(data.get("booking_type") or booking.booking_type)

            if {"booking_date", "booking_time_from", "booking_type"} & data.keys():
                day = data.get("booking_date") or booking.booking_date.date()
                check_in = derive_check_in(
                    day, farmhouse.check_in_from, data.get("booking_time_from") or booking.booking_time_from
                )
                check_out = derive_check_out(check_in, category, farmhouse.check_out_to)
                if booking.payment_status != "cancel":
                    availability = check_availability(
                        db, farmhouse, check_in, check_out, exclude_booking_id=booking.id
                    )
                    if not availability.admissible:
                        raise BookingConflictError("This date is already booked", availability.conflicting_booking_id)
                booking.booking_date = check_in
                booking.booking_end_date = check_out
                booking.booking_time_from = format_hhmm(check_in)
                booking.booking_time_to = format_hhmm(check_out)
                booking.booking_type = category.value
                booking.booking_hours = category.hours

            if "number_of_persons" in data:
                _check_capacity(farmhouse, data["number_of_persons"])
                booking.number_of_persons = data["number_of_persons"]

            if "is_logged_in" in data:
                booking.is_logged_in = bool(data["is_logged_in"])
            if data.get("original_price"):
                booking.original_price = to_money(data["original_price"])
            elif "booking_type" in data:
                option = _price_option(db, farmhouse.id, category)
                booking.original_price = resolve_price(option, category, booking.number_of_persons)
            elif "number_of_persons" in data:
                option = _price_option(db, farmhouse.id, category)
                if option is not None and booking.number_of_persons > option.max_people:
                    raise CapacityExceededError(f"Maximum {option.max_people} persons allowed for this booking type")

            if {"original_price", "is_logged_in", "booking_type"} & data.keys():
                booking.discount_amount = compute_discount(booking.original_price, booking.is_logged_in)
                booking.final_price = to_money(booking.original_price) - booking.discount_amount
                if booking.payment_status == "partial":
                    paid, remaining = ledger.validate_partial(booking.final_price, booking.partial_paid_amount)
                    booking.partial_paid_amount, booking.remaining_amount = paid, remaining

            for field in ("customer_name", "customer_mobile", "customer_email", "farm_status", "booking_data"):
                if field in data:
                    setattr(booking, field, data[field])

            lifecycle.apply(booking, now)
            _commit(db, "update booking")
    except BookingError:
        db.rollback()
        raise

    db.refresh(booking)
    return booking


def cancel_booking(db: Session, booking_id: int, notes: Optional[str] = None, now: Optional[datetime] = None) -> models.Booking:
    """Mark a booking cancelled (idempotent); frees the farmhouse and recomputes statistics."""
    now = now or lifecycle.local_now()
    booking = _get_booking(db, booking_id)
    if booking.payment_status == "cancel":
        return booking
    old_status = booking.payment_status
    _apply_payment_fields(booking, "cancel")
    ledger.record_transition(booking, "cancel", at=now, notes=notes or "Booking cancelled", from_status=old_status)
    lifecycle.apply(booking, now)
    _commit(db, "cancel booking")
    db.refresh(booking)
    logger.info("Cancelled booking %s", booking.id)
    recompute_most_visited(db)
    return booking


def remove_booking(db: Session, booking_id: int) -> None:
    booking = _get_booking(db, booking_id)
    db.delete(booking)
    _commit(db, "delete booking")
    logger.info("Deleted booking %s", booking_id)
    recompute_most_visited(db)


# ----------------
# Queries (each refreshes lifecycle state before returning rows)
# ----------------
def get_booking(db: Session, booking_id: int, now: Optional[datetime] = None) -> models.Booking:
    booking = _get_booking(db, booking_id)
    lifecycle.refresh_bookings(db, [booking], now)
    return booking


def get_booking_by_invoice_token(db: Session, token: str, now: Optional[datetime] = None) -> models.Booking:
    booking = db.query(models.Booking).filter(models.Booking.invoice_token == token).first()
    if not booking:
        raise NotFoundError("Invoice not found")
    lifecycle.refresh_bookings(db, [booking], now)
    return booking


def get_user_orders(db: Session, user_id: int, now: Optional[datetime] = None) -> List[models.Booking]:
    items = (
        db.query(models.Booking)
        .options(joinedload(models.Booking.farmhouse))
        .filter(models.Booking.user_id == user_id)
        .order_by(models.Booking.booking_date.desc(), models.Booking.id.desc())
        .all()
    )
    return lifecycle.refresh_bookings(db, items, now)


def list_bookings(
    db: Session, query: schemas.BookingQuery, now: Optional[datetime] = None
) -> Tuple[List[models.Booking], int]:
    """Admin listing with filters, free-text search and pagination."""
    now = now or lifecycle.local_now()
    q = (
        db.query(models.Booking)
        .join(models.Farmhouse, models.Farmhouse.id == models.Booking.farmhouse_id)
        .outerjoin(models.User, models.User.id == models.Booking.user_id)
    )
    if query.farmhouse_id:
        q = q.filter(models.Booking.farmhouse_id == query.farmhouse_id)
    if query.user_id:
        q = q.filter(models.Booking.user_id == query.user_id)
    if query.payment_status:
        q = q.filter(models.Booking.payment_status == query.payment_status)
    if query.date_from:
        q = q.filter(models.Booking.booking_date >= datetime.combine(query.date_from, datetime.min.time()))
    if query.date_to:
        q = q.filter(models.Booking.booking_date < datetime.combine(query.date_to + timedelta(days=1), datetime.min.time()))
    if query.search:
        term = f"%{query.search.strip()}%"
        q = q.filter(
            or_(
                models.Booking.customer_name.ilike(term),
                models.Booking.customer_email.ilike(term),
                models.Booking.customer_mobile.ilike(term),
                models.Booking.invoice_token.ilike(term),
                models.User.name.ilike(term),
                models.User.email.ilike(term),
                models.Farmhouse.name.ilike(term),
            )
        )

    if query.booking_status:
        # Stored status may be stale; refresh candidates before filtering on it
        lifecycle.refresh_bookings(db, q.all(), now)
        q = q.filter(models.Booking.booking_status == query.booking_status)

    total = q.count()
    items = (
        q.order_by(models.Booking.booking_date.desc(), models.Booking.id.desc())
        .offset((query.page - 1) * query.limit)
        .limit(query.limit)
        .all()
    )
    return lifecycle.refresh_bookings(db, items, now), total


def get_farm_availability(
    db: Session, farmhouse_id: int, now: Optional[datetime] = None
) -> Tuple[models.Farmhouse, List[models.Booking]]:
    farmhouse = get_farmhouse(db, farmhouse_id)
    items = (
        active_bookings_query(db, farmhouse_id)
        .order_by(models.Booking.booking_date.desc())
        .all()
    )
    return farmhouse, lifecycle.refresh_bookings(db, items, now)


def get_farm_statistics(db: Session, farmhouse_id: int, now: Optional[datetime] = None) -> schemas.FarmStatistics:
    farmhouse = get_farmhouse(db, farmhouse_id)
    items = lifecycle.refresh_bookings(db, active_bookings_query(db, farmhouse_id).all(), now)

    collected = outstanding = Decimal("0.00")
    for b in items:
        breakdown = ledger.payment_breakdown(b)
        collected += breakdown.paid
        outstanding += breakdown.remaining

    def _count(attr: str, value: str) -> int:
        return sum(1 for b in items if getattr(b, attr) == value)

    return schemas.FarmStatistics(
        farmhouse_id=farmhouse.id,
        farmhouse_name=farmhouse.name,
        total_orders=len(items),
        total_income=sum((to_money(b.final_price) for b in items), Decimal("0.00")),
        amount_collected=collected,
        amount_outstanding=outstanding,
        paid_orders=_count("payment_status", "paid"),
        partial_orders=_count("payment_status", "partial"),
        incomplete_orders=_count("payment_status", "incomplete"),
        upcoming_orders=_count("booking_status", lifecycle.UPCOMING),
        current_orders=_count("booking_status", lifecycle.CURRENT),
        expired_orders=_count("booking_status", lifecycle.EXPIRED),
    )


def available_farms(
    db: Session,
    day: Optional[date],
    category=None,
    now: Optional[datetime] = None,
) -> schemas.AvailableFarmsResponse:
    now = now or lifecycle.local_now()
    category = parse_category(category) if category else None
    if day is None:
        farms = (
            db.query(models.Farmhouse)
            .filter(models.Farmhouse.status == True)  # noqa: E712
            .order_by(models.Farmhouse.id)
            .all()
        )
        total = len(farms)
    else:
        farms, total = list_available_farmhouses(db, day, now, category)

    result = []
    for farm in farms:
        item = schemas.AvailableFarmhouse.model_validate(farm)
        if category is not None:
            option = next((p for p in farm.price_options if p.category == category.value), None)
            item.price = to_money(option.price) if option else None
        result.append(item)
    return schemas.AvailableFarmsResponse(
        booking_date=day,
        booking_type=category.value if category else "all",
        available_farms=result,
        total_available=len(result),
        total_farms=total,
    )


# ----------------
# Serialization
# ----------------
def _user_summary(booking: models.Booking) -> schemas.UserSummary:
    user = booking.user
    return schemas.UserSummary(
        id=user.id if user else None,
        name=(user.name if user else None) or booking.customer_name,
        email=(user.email if user else None) or booking.customer_email,
        mobile_no=(user.mobile_no if user else None) or booking.customer_mobile,
    )


def serialize_booking(booking: models.Booking) -> schemas.BookingRead:
    check_in, check_out = booking_interval(booking, booking.farmhouse)
    breakdown = ledger.payment_breakdown(booking)
    return schemas.BookingRead(
        id=booking.id,
        invoice_token=booking.invoice_token,
        user=_user_summary(booking),
        farmhouse=schemas.FarmhouseSummary.model_validate(booking.farmhouse),
        start_date=check_in.date(),
        end_date=check_out.date(),
        check_in_at=check_in,
        check_out_at=check_out,
        check_in_time=booking.booking_time_from,
        check_out_time=booking.booking_time_to,
        booking_hours=booking.booking_hours or hours_for_category(booking.booking_type),
        booking_type=booking.booking_type,
        number_of_persons=booking.number_of_persons,
        original_price=to_money(booking.original_price),
        discount_amount=to_money(booking.discount_amount),
        final_price=to_money(booking.final_price),
        is_logged_in=bool(booking.is_logged_in),
        payment_status=booking.payment_status,
        farm_status=booking.farm_status,
        booking_status=booking.booking_status,
        next_status_check_at=booking.next_status_check_at,
        paid_amount=breakdown.paid,
        remaining_amount=breakdown.remaining,
        payment_history=booking.payment_history or [],
        booking_data=booking.booking_data,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def serialize_created(booking: models.Booking) -> schemas.BookingCreated:
    check_in, check_out = booking_interval(booking, booking.farmhouse)
    booked, available = date_hints(check_in, check_out, booking.booking_type)
    return schemas.BookingCreated(
        **serialize_booking(booking).model_dump(),
        booked_dates=booked,
        available_dates=available,
    )


def serialize_invoice(booking: models.Booking) -> schemas.Invoice:
    check_in, check_out = booking_interval(booking, booking.farmhouse)
    breakdown = ledger.payment_breakdown(booking)
    return schemas.Invoice(
        invoice_token=booking.invoice_token,
        booking_id=booking.id,
        check_in_at=check_in,
        check_out_at=check_out,
        booking_hours=booking.booking_hours or hours_for_category(booking.booking_type),
        booking_type=booking.booking_type,
        number_of_persons=booking.number_of_persons,
        customer=_user_summary(booking),
        farmhouse=schemas.FarmhouseSummary.model_validate(booking.farmhouse),
        original_price=to_money(booking.original_price),
        discount_amount=to_money(booking.discount_amount),
        final_price=to_money(booking.final_price),
        paid_amount=breakdown.paid,
        remaining_amount=breakdown.remaining,
        payment_status=booking.payment_status,
        booking_status=booking.booking_status,
        booking_data=booking.booking_data,
        created_at=booking.created_at,
    )


def page_of(items: List[models.Booking], total: int, query: schemas.BookingQuery) -> schemas.BookingPage:
    return schemas.BookingPage(
        bookings=[serialize_booking(b) for b in items],
        total=total,
        page=query.page,
        limit=query.limit,
        total_pages=math.ceil(total / query.limit) if total else 0,
    )
