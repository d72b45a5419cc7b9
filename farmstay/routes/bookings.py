# Booking endpoints: create, read, availability, payment status, admin edit/cancel/delete.
# Handlers stay thin; booking_service owns the rules and raises typed errors rendered by errors.py.
from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import booking_service, models, schemas, sweepers
from ..calculator import DurationCategory
from ..rate_limit import rate_limit
from .auth import get_current_user, get_current_user_optional, is_admin, require_admin

router = APIRouter()


def _ensure_owner_or_admin(booking: models.Booking, user: models.User) -> None:
    if not is_admin(user) and booking.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this booking")


@router.post(
    "/bookings",
    response_model=schemas.ApiResponse[schemas.BookingCreated],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
):
    # Admins book on behalf of walk-in customers; only customers book for themselves
    acting = None if user is None or is_admin(user) else user
    booking = booking_service.create_booking(db, payload, request_user=acting)
    return schemas.ApiResponse(msg="Booking created successfully", data=booking_service.serialize_created(booking))


@router.get("/bookings/my-orders", response_model=schemas.ApiResponse[List[schemas.BookingRead]])
def my_orders(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    items = booking_service.get_user_orders(db, user.id)
    return schemas.ApiResponse(
        msg="User orders fetched successfully",
        data=[booking_service.serialize_booking(b) for b in items],
    )


@router.get("/bookings/available-farms", response_model=schemas.ApiResponse[schemas.AvailableFarmsResponse])
def available_farms(
    booking_date: Optional[date] = Query(None, alias="date"),
    duration_category: Optional[DurationCategory] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Active farmhouses free on `date`.

    Without a date every active farmhouse is returned; `duration_category` selects
    which price is reported for each farm.
    """
    data = booking_service.available_farms(db, booking_date, duration_category)
    msg = "Available farms fetched successfully" if booking_date else "All farms fetched successfully"
    return schemas.ApiResponse(msg=msg, data=data)


@router.get("/bookings/farm/{farmhouse_id}/availability", response_model=schemas.ApiResponse[schemas.FarmAvailability])
def farm_availability(farmhouse_id: int, db: Session = Depends(get_db)):
    farmhouse, items = booking_service.get_farm_availability(db, farmhouse_id)
    return schemas.ApiResponse(
        msg="Farm availability fetched successfully",
        data=schemas.FarmAvailability(
            farmhouse=schemas.FarmhouseRead.model_validate(farmhouse),
            booked_dates=[booking_service.serialize_booking(b) for b in items],
            total_bookings=len(items),
        ),
    )


@router.get("/bookings/farm/{farmhouse_id}/statistics", response_model=schemas.ApiResponse[schemas.FarmStatistics])
def farm_statistics(farmhouse_id: int, db: Session = Depends(get_db), _: models.User = Depends(require_admin)):
    return schemas.ApiResponse(
        msg="Farm statistics fetched successfully",
        data=booking_service.get_farm_statistics(db, farmhouse_id),
    )


@router.get(
    "/bookings/invoice/{token}",
    response_model=schemas.ApiResponse[schemas.Invoice],
    dependencies=[Depends(rate_limit("public"))],
)
def invoice_by_token(token: str, db: Session = Depends(get_db)):
    booking = booking_service.get_booking_by_invoice_token(db, token)
    return schemas.ApiResponse(msg="Invoice fetched successfully", data=booking_service.serialize_invoice(booking))


@router.post("/bookings/admin/refresh-statuses", response_model=schemas.ApiResponse[schemas.SweepResultRead])
def force_refresh_statuses(db: Session = Depends(get_db), _: models.User = Depends(require_admin)):
    result = sweepers.refresh_all_statuses(db)
    return schemas.ApiResponse(
        msg=f"Successfully updated {result.updated} out of {result.total} bookings",
        data=schemas.SweepResultRead(total=result.total, updated=result.updated, failed=result.failed),
    )


@router.get("/bookings", response_model=schemas.ApiResponse[schemas.BookingPage])
def list_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    farmhouse_id: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None),
    payment_status: Optional[schemas.PaymentStatus] = Query(None),
    booking_status: Optional[schemas.BookingStatus] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None, max_length=255),
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    query = schemas.BookingQuery(
        page=page,
        limit=limit,
        farmhouse_id=farmhouse_id,
        user_id=user_id,
        payment_status=payment_status,
        booking_status=booking_status,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    items, total = booking_service.list_bookings(db, query)
    return schemas.ApiResponse(msg="Bookings fetched successfully", data=booking_service.page_of(items, total, query))


@router.get("/bookings/{booking_id}", response_model=schemas.ApiResponse[schemas.BookingRead])
def get_booking(booking_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    booking = booking_service.get_booking(db, booking_id)
    _ensure_owner_or_admin(booking, user)
    return schemas.ApiResponse(msg="Booking fetched successfully", data=booking_service.serialize_booking(booking))


@router.patch(
    "/bookings/{booking_id}",
    response_model=schemas.ApiResponse[schemas.BookingRead],
    dependencies=[Depends(rate_limit("write"))],
)
def update_booking(
    booking_id: int,
    payload: schemas.BookingUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    booking = booking_service.update_booking(db, booking_id, payload)
    return schemas.ApiResponse(msg="Booking updated successfully", data=booking_service.serialize_booking(booking))


@router.patch(
    "/bookings/{booking_id}/payment-status",
    response_model=schemas.ApiResponse[schemas.BookingRead],
    dependencies=[Depends(rate_limit("write"))],
)
def update_payment_status(
    booking_id: int,
    payload: schemas.PaymentStatusUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    booking = booking_service.update_payment_status(db, booking_id, payload)
    return schemas.ApiResponse(
        msg="Payment status updated successfully",
        data=booking_service.serialize_booking(booking),
    )


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=schemas.ApiResponse[schemas.BookingRead],
    dependencies=[Depends(rate_limit("write"))],
)
def cancel_booking(booking_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    booking = booking_service.get_booking(db, booking_id)
    _ensure_owner_or_admin(booking, user)
    booking = booking_service.cancel_booking(db, booking_id)
    return schemas.ApiResponse(msg="Booking cancelled successfully", data=booking_service.serialize_booking(booking))


@router.post("/bookings/{booking_id}/refresh-status", response_model=schemas.ApiResponse[schemas.StatusRefreshRead])
def refresh_booking_status(booking_id: int, db: Session = Depends(get_db), _: models.User = Depends(require_admin)):
    result = sweepers.refresh_single_booking(db, booking_id)
    if result["changed"]:
        msg = f"Booking status updated from {result['old_status']} to {result['new_status']}"
    else:
        msg = f"No change needed. Status remains {result['old_status']}"
    return schemas.ApiResponse(msg=msg, data=result)


@router.delete(
    "/bookings/{booking_id}",
    response_model=schemas.ApiResponse[None],
    dependencies=[Depends(rate_limit("write"))],
)
def remove_booking(booking_id: int, db: Session = Depends(get_db), _: models.User = Depends(require_admin)):
    booking_service.remove_booking(db, booking_id)
    return schemas.ApiResponse(msg="Booking deleted successfully", data=None)
