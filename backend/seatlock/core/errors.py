"""
Reservation error taxonomy.

Every failure the reservation core can report is a ReservationError carrying a
stable code and the HTTP status the API layer renders it with. The core raises
these; only the API layer turns them into responses.
"""

from typing import Any, Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from seatlock.core.logging import get_logger

logger = get_logger(__name__)


class ReservationError(Exception):
    code = "RESERVATION_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class StorageUnavailable(ReservationError):
    """The seat store could not be reached; nothing was written."""

    code = "STORAGE_UNAVAILABLE"
    status_code = 503

    def __init__(self, message: str = "Seat storage is unavailable, please try again"):
        super().__init__(message)


class ValidationFailed(ReservationError):
    code = "VALIDATION_FAILED"
    status_code = 422

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message, {"errors": errors or []})


class ConflictLost(ReservationError):
    """One or more seats were no longer available when the hold was written."""

    code = "CONFLICT_LOST"
    status_code = 409

    def __init__(self, seat_ids: Iterable[str]):
        self.seat_ids = sorted(set(seat_ids))
        super().__init__(
            "Seat no longer available, please pick another",
            {"seat_ids": self.seat_ids},
        )


class ExpiredLock(ReservationError):
    code = "LOCK_EXPIRED"
    status_code = 410

    def __init__(self, seat_ids: Iterable[str]):
        self.seat_ids = sorted(set(seat_ids))
        super().__init__("Your hold on these seats has expired", {"seat_ids": self.seat_ids})


class NotHolder(ReservationError):
    code = "NOT_HOLDER"
    status_code = 403

    def __init__(self, seat_ids: Iterable[str]):
        self.seat_ids = sorted(set(seat_ids))
        super().__init__("These seats are not held by your session", {"seat_ids": self.seat_ids})


class InvalidTransition(ReservationError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, seat_id: str, current: str, action: str):
        super().__init__(
            f"Cannot {action} seat {seat_id} while it is {current}",
            {"seat_id": seat_id, "status": current, "action": action},
        )


class SeatNotFound(ReservationError):
    code = "SEAT_NOT_FOUND"
    status_code = 404

    def __init__(self, seat_ids: Iterable[str]):
        self.seat_ids = sorted(set(seat_ids))
        super().__init__(f"Unknown seat(s): {', '.join(self.seat_ids)}", {"seat_ids": self.seat_ids})


class ReceiptNotFound(ReservationError):
    """The seat exists but carries no payment info."""

    code = "RECEIPT_NOT_FOUND"
    status_code = 404

    def __init__(self, seat_id: str, current: str):
        super().__init__(
            f"Seat {seat_id} has no payment on record while it is {current}",
            {"seat_id": seat_id, "status": current},
        )


async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    logger.info(
        "reservation_error",
        code=exc.code,
        status_code=exc.status_code,
        message=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )
