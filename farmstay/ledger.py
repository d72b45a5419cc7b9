# Partial-payment ledger: validates partial amounts, appends payment transitions to the
# booking's history and derives paid/remaining figures for responses.
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from . import models
from .calculator import to_money
from .errors import ValidationError

PAYMENT_STATUSES = ("incomplete", "partial", "paid", "cancel")


@dataclass(frozen=True)
class PaymentBreakdown:
    paid: Decimal
    remaining: Decimal


def validate_partial(final_price, paid_amount, remaining_amount=None) -> Tuple[Decimal, Decimal]:
    """
    Check a partial payment against the booking's final price.

    Returns (paid, remaining); remaining is derived when not supplied and must
    add up to the final price when it is.
    """
    final = to_money(final_price)
    if paid_amount is None:
        raise ValidationError("Paid amount is required for partial payments")
    paid = to_money(paid_amount)
    if paid <= 0:
        raise ValidationError("Paid amount must be greater than 0 for partial payments")
    if paid >= final:
        raise ValidationError("Paid amount must be less than the final price for partial payments")
    remaining = final - paid
    if remaining_amount is not None and to_money(remaining_amount) != remaining:
        raise ValidationError(f"Remaining amount must equal final price minus paid amount ({remaining})")
    return paid, remaining


def farm_status_for_payment(payment_status: str, current: str) -> str:
    if payment_status in ("paid", "partial"):
        return "unavailable"
    if payment_status == "cancel":
        return "available"
    return current


def record_transition(
    booking: models.Booking,
    to_status: str,
    at: datetime,
    amount=None,
    partial: Optional[dict] = None,
    notes: Optional[str] = None,
    from_status: Optional[str] = None,
) -> dict:
    """Append one entry to booking.payment_history; earlier entries are never touched."""
    entry = {
        "from_status": from_status,
        "to_status": to_status,
        "amount": str(to_money(amount)) if amount is not None else None,
        "timestamp": at.isoformat(),
    }
    if partial:
        entry["partial_details"] = {k: str(to_money(v)) for k, v in partial.items()}
    if notes:
        entry["notes"] = notes
    # Assign a new list so the JSON column is flagged dirty
    booking.payment_history = [*(booking.payment_history or []), entry]
    return entry


def payment_breakdown(booking: models.Booking) -> PaymentBreakdown:
    final = to_money(booking.final_price)
    if booking.payment_status == "paid":
        return PaymentBreakdown(paid=final, remaining=Decimal("0.00"))
    if booking.payment_status == "partial":
        paid = to_money(booking.partial_paid_amount)
        if booking.remaining_amount is None:
            return PaymentBreakdown(paid=paid, remaining=final - paid)
        return PaymentBreakdown(paid=paid, remaining=to_money(booking.remaining_amount))
    if booking.payment_status == "cancel":
        return PaymentBreakdown(paid=Decimal("0.00"), remaining=Decimal("0.00"))
    return PaymentBreakdown(paid=Decimal("0.00"), remaining=final)
