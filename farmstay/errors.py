# Domain error taxonomy for booking operations plus the FastAPI handlers that render them.
# Services raise these; routes never build error envelopes by hand.
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger("farmstay.errors")


class BookingError(Exception):
    """Base class: a rejection with a human-readable reason and an HTTP status."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, msg: str, data: Any = None) -> None:
        super().__init__(msg)
        self.msg = msg
        self.data = data


class ValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PriceNotFoundError(NotFoundError):
    pass


class ConflictError(BookingError):
    status_code = status.HTTP_409_CONFLICT


class BookingConflictError(ConflictError):
    def __init__(self, msg: str, conflicting_booking_id: Optional[int] = None) -> None:
        super().__init__(msg, data={"conflicting_booking_id": conflicting_booking_id})
        self.conflicting_booking_id = conflicting_booking_id


class CapacityExceededError(ConflictError):
    pass


class PersistenceError(BookingError):
    """Store unavailable or timed out; nothing was committed, so the caller may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def envelope(error: bool, msg: str, data: Any = None) -> dict:
    return {"error": error, "msg": msg, "data": data}


def _booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.msg)
    return JSONResponse(status_code=exc.status_code, content=envelope(True, exc.msg, exc.data))


def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        msg, data = detail, None
    else:
        # Structured details (e.g., rate limiting) travel in the data slot
        msg, data = "Request rejected", detail
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(True, msg, data),
        headers=getattr(exc, "headers", None),
    )


def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # One line, field-prefixed messages: "body.number_of_persons: Input should be greater than or equal to 1"
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=envelope(True, ", ".join(parts) or "Invalid request", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, _booking_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
