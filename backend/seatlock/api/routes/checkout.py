"""
Checkout endpoints: hold seats, release them, submit registration.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from seatlock.api.deps import get_engine, get_watchdog
from seatlock.core.security import get_session_token
from seatlock.schemas.checkout import CancelRequest, CancelResponse, CheckoutRequest, CheckoutResponse
from seatlock.schemas.registration import RegistrationRequest, RegistrationResponse
from seatlock.schemas.seat import SeatPublic
from seatlock.services.reservation_service import LOCK_DURATION_MS, ReservationEngine
from seatlock.services.watchdog_service import ExpiryWatchdog

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("", response_model=CheckoutResponse)
async def checkout(
    request: CheckoutRequest,
    session: str = Depends(get_session_token),
    engine: ReservationEngine = Depends(get_engine),
    watchdog: ExpiryWatchdog = Depends(get_watchdog),
):
    """
    Hold seats for this session for five minutes.

    All requested seats are held together or none are: if any seat was taken
    in the meantime the call fails with 409 CONFLICT_LOST naming those seats.
    Omit seat_ids to check out the current selection.
    """
    seats = await engine.checkout(session, request.seat_ids)
    locked_at = seats[0].locked_at
    watchdog.arm(session, locked_at)
    return CheckoutResponse(
        seats=[SeatPublic.from_seat(seat, session) for seat in seats],
        locked_at=locked_at,
        expires_at=locked_at + LOCK_DURATION_MS,
        remaining_seconds=watchdog.remaining(session),
    )


@router.post("/cancel", response_model=CancelResponse)
async def cancel_checkout(
    request: Optional[CancelRequest] = None,
    session: str = Depends(get_session_token),
    engine: ReservationEngine = Depends(get_engine),
    watchdog: ExpiryWatchdog = Depends(get_watchdog),
):
    """Release this session's holds (all of them, or only seat_ids)."""
    seat_ids = request.seat_ids if request is not None else None
    released = await engine.cancel_checkout(session, seat_ids)
    if seat_ids is None or not await engine.held_by(session):
        watchdog.cancel(session)
    return CancelResponse(released=released)


@router.post("/registration", response_model=RegistrationResponse)
async def submit_registration(
    request: RegistrationRequest,
    session: str = Depends(get_session_token),
    engine: ReservationEngine = Depends(get_engine),
    watchdog: ExpiryWatchdog = Depends(get_watchdog),
):
    """
    Attach attendee details and payment proof to every held seat.

    Seats move to PENDING and wait for an admin. `details` maps each held
    seat id to its attendee; the response total already includes member
    discounts.
    """
    seats, total = await engine.submit_registration(session, request.details, request.ref_no, request.receipt)
    watchdog.cancel(session)
    return RegistrationResponse(
        seats=[SeatPublic.from_seat(seat, session) for seat in seats],
        total=total,
    )
