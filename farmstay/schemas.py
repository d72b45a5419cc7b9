# Pydantic models (request/response DTOs) used by the API layer.
# Keep models minimal and serializable; business logic lives in the booking service.
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .calculator import DurationCategory, parse_hhmm

T = TypeVar("T")

PaymentStatus = Literal["incomplete", "partial", "paid", "cancel"]
FarmStatus = Literal["available", "unavailable"]
BookingStatus = Literal["upcoming", "current", "expired"]


# Standard response envelope: {error, msg, data}
class ApiResponse(BaseModel, Generic[T]):
    error: bool = False
    msg: str
    data: Optional[T] = None


def _strip(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


def _check_hhmm(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    parsed = parse_hhmm(v)
    return parsed.strftime("%H:%M")


# Farmhouses
class PriceOptionBase(BaseModel):
    category: DurationCategory
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    max_people: int = Field(..., ge=1)


class PriceOptionRead(PriceOptionBase):
    id: int

    model_config = ConfigDict(from_attributes=True)


class FarmhouseBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255)
    farm_no: Optional[str] = None
    max_persons: int = Field(..., ge=1)
    check_in_from: str = "10:00"
    check_out_to: str = "22:00"

    @field_validator("name", "slug", mode="before")
    @classmethod
    def strip_text(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip()
        return v

    @field_validator("check_in_from", "check_out_to")
    @classmethod
    def valid_time(cls, v: str) -> str:
        try:
            return _check_hhmm(v)
        except Exception as exc:
            raise ValueError("time must be HH:MM") from exc


# Payload for creating a farmhouse together with its price table
class FarmhouseCreate(FarmhouseBase):
    status: bool = True
    price_options: List[PriceOptionBase] = Field(default_factory=list)


class FarmhouseStatusUpdate(BaseModel):
    status: bool


class FarmhouseRead(FarmhouseBase):
    id: int
    status: bool
    is_most_visited: bool
    price_options: List[PriceOptionRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class AvailableFarmhouse(FarmhouseRead):
    # price of the requested duration category, when one was requested and offered
    price: Optional[Decimal] = None


class AvailableFarmsResponse(BaseModel):
    booking_date: Optional[date] = None
    booking_type: str = "all"
    available_farms: List[AvailableFarmhouse]
    total_available: int
    total_farms: int


# Bookings
class BookingCreate(BaseModel):
    farmhouse_id: int = Field(..., ge=1)
    user_id: Optional[int] = Field(default=None, ge=1)
    customer_name: Optional[str] = Field(default=None, max_length=255)
    customer_mobile: Optional[str] = Field(default=None, max_length=32)
    customer_email: Optional[EmailStr] = None
    booking_date: date
    # explicit check-in time overriding the farmhouse default
    booking_time_from: Optional[str] = None
    number_of_persons: int = Field(..., ge=1)
    booking_type: DurationCategory
    original_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    is_logged_in: Optional[bool] = None
    payment_status: PaymentStatus = "incomplete"
    paid_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    remaining_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    farm_status: FarmStatus = "available"
    booking_data: Optional[dict] = None

    @field_validator("customer_name", "customer_mobile", "customer_email", mode="before")
    @classmethod
    def strip_customer(cls, v):
        v = _strip(v)
        if isinstance(v, str) and "@" in v:
            v = v.lower()
        return v

    @field_validator("booking_time_from")
    @classmethod
    def valid_time(cls, v: Optional[str]) -> Optional[str]:
        try:
            return _check_hhmm(v)
        except Exception as exc:
            raise ValueError("time must be HH:MM") from exc


# Admin edit: every field optional; only supplied fields change
class BookingUpdate(BaseModel):
    customer_name: Optional[str] = Field(default=None, max_length=255)
    customer_mobile: Optional[str] = Field(default=None, max_length=32)
    customer_email: Optional[EmailStr] = None
    booking_date: Optional[date] = None
    booking_time_from: Optional[str] = None
    booking_type: Optional[DurationCategory] = None
    number_of_persons: Optional[int] = Field(default=None, ge=1)
    original_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    is_logged_in: Optional[bool] = None
    farm_status: Optional[FarmStatus] = None
    booking_data: Optional[dict] = None

    @field_validator("customer_name", "customer_mobile", mode="before")
    @classmethod
    def strip_customer(cls, v):
        return _strip(v)

    @field_validator("booking_time_from")
    @classmethod
    def valid_time(cls, v: Optional[str]) -> Optional[str]:
        try:
            return _check_hhmm(v)
        except Exception as exc:
            raise ValueError("time must be HH:MM") from exc


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    paid_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    remaining_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=1000)


class BookingQuery(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    farmhouse_id: Optional[int] = None
    user_id: Optional[int] = None
    payment_status: Optional[PaymentStatus] = None
    booking_status: Optional[BookingStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None


class UserSummary(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    mobile_no: Optional[str] = None


class FarmhouseSummary(BaseModel):
    id: int
    name: str
    slug: str
    farm_no: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentEntry(BaseModel):
    from_status: Optional[str] = None
    to_status: str
    amount: Optional[Decimal] = None
    partial_details: Optional[dict] = None
    notes: Optional[str] = None
    timestamp: datetime


# API response for a booking record, joined with farmhouse/user summaries
class BookingRead(BaseModel):
    id: int
    invoice_token: str
    user: UserSummary
    farmhouse: FarmhouseSummary
    start_date: date
    end_date: date
    check_in_at: datetime
    check_out_at: datetime
    check_in_time: str
    check_out_time: str
    booking_hours: int
    booking_type: DurationCategory
    number_of_persons: int
    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    is_logged_in: bool
    payment_status: PaymentStatus
    farm_status: FarmStatus
    booking_status: BookingStatus
    next_status_check_at: Optional[datetime] = None
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_history: List[PaymentEntry] = Field(default_factory=list)
    booking_data: Optional[Any] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookingCreated(BookingRead):
    # start day booked; the day that opens up again once this stay ends
    booked_dates: List[date] = Field(default_factory=list)
    available_dates: List[date] = Field(default_factory=list)


class BookingPage(BaseModel):
    bookings: List[BookingRead]
    total: int
    page: int
    limit: int
    total_pages: int


class FarmAvailability(BaseModel):
    farmhouse: FarmhouseRead
    booked_dates: List[BookingRead]
    total_bookings: int


class FarmStatistics(BaseModel):
    farmhouse_id: int
    farmhouse_name: str
    total_orders: int
    total_income: Decimal
    amount_collected: Decimal
    amount_outstanding: Decimal
    paid_orders: int
    partial_orders: int
    incomplete_orders: int
    upcoming_orders: int
    current_orders: int
    expired_orders: int


class Invoice(BaseModel):
    invoice_token: str
    booking_id: int
    check_in_at: datetime
    check_out_at: datetime
    booking_hours: int
    booking_type: DurationCategory
    number_of_persons: int
    customer: UserSummary
    farmhouse: FarmhouseSummary
    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_status: PaymentStatus
    booking_status: BookingStatus
    booking_data: Optional[Any] = None
    created_at: Optional[datetime] = None


class SweepResultRead(BaseModel):
    total: int
    updated: int
    failed: int


class StatusRefreshRead(BaseModel):
    booking_id: int
    old_status: str
    new_status: str
    changed: bool
