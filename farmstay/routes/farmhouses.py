# Farmhouse catalogue endpoints.
# Admins create farmhouses with their price tables and toggle them active; anyone can browse.
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import booking_service, models, schemas
from ..errors import ConflictError
from .auth import require_admin
from ..rate_limit import rate_limit

router = APIRouter()


@router.get("/farmhouses", response_model=schemas.ApiResponse[List[schemas.FarmhouseRead]])
def list_farmhouses(db: Session = Depends(get_db)):
    """List active farmhouses, most visited first, then newest."""
    items = (
        db.query(models.Farmhouse)
        .filter(models.Farmhouse.status == True)  # noqa: E712
        .order_by(models.Farmhouse.is_most_visited.desc(), models.Farmhouse.id.desc())
        .all()
    )
    return schemas.ApiResponse(
        msg="Farmhouses fetched successfully",
        data=[schemas.FarmhouseRead.model_validate(f) for f in items],
    )


@router.get("/farmhouses/{farmhouse_id}", response_model=schemas.ApiResponse[schemas.FarmhouseRead])
def get_farmhouse(farmhouse_id: int, db: Session = Depends(get_db)):
    farmhouse = booking_service.get_farmhouse(db, farmhouse_id)
    return schemas.ApiResponse(msg="Farmhouse fetched successfully", data=schemas.FarmhouseRead.model_validate(farmhouse))


@router.post(
    "/farmhouses",
    response_model=schemas.ApiResponse[schemas.FarmhouseRead],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_farmhouse(
    payload: schemas.FarmhouseCreate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    """
    Create a farmhouse together with its price options.

    One option per duration category; duplicates or a taken slug are rejected with 409.
    """
    categories = [p.category for p in payload.price_options]
    if len(set(categories)) != len(categories):
        raise ConflictError("Duplicate price option category")

    obj = models.Farmhouse(
        name=payload.name,
        slug=payload.slug,
        farm_no=payload.farm_no,
        max_persons=payload.max_persons,
        check_in_from=payload.check_in_from,
        check_out_to=payload.check_out_to,
        status=payload.status,
        price_options=[
            models.PriceOption(category=p.category.value, price=p.price, max_people=p.max_people)
            for p in payload.price_options
        ],
    )
    db.add(obj)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Farmhouse slug already exists")
    db.refresh(obj)
    return schemas.ApiResponse(msg="Farmhouse created successfully", data=schemas.FarmhouseRead.model_validate(obj))


@router.patch(
    "/farmhouses/{farmhouse_id}/status",
    response_model=schemas.ApiResponse[schemas.FarmhouseRead],
    dependencies=[Depends(rate_limit("write"))],
)
def update_farmhouse_status(
    farmhouse_id: int,
    payload: schemas.FarmhouseStatusUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    farmhouse = booking_service.get_farmhouse(db, farmhouse_id)
    farmhouse.status = payload.status
    db.commit()
    db.refresh(farmhouse)
    return schemas.ApiResponse(msg="Farmhouse status updated successfully", data=schemas.FarmhouseRead.model_validate(farmhouse))
