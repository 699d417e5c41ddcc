"""
Session endpoints: mint a session token, recover state, manage the selection.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, status

from seatlock.api.deps import get_engine, get_watchdog
from seatlock.core.logging import get_logger
from seatlock.core.security import get_session_token, new_session_token
from seatlock.schemas.checkout import SelectionResponse, SessionCreated, SessionState
from seatlock.schemas.seat import SeatPublic, SeatStatus
from seatlock.services.reservation_service import LOCK_DURATION_SECONDS, ReservationEngine
from seatlock.services.watchdog_service import ExpiryWatchdog

logger = get_logger(__name__)
router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.post("", response_model=SessionCreated, status_code=status.HTTP_201_CREATED)
async def create_session():
    """Issue a new session token. Send it back as X-Session-Token on every call."""
    token = new_session_token()
    logger.info("session_created", session=token[:8])
    return SessionCreated(session_token=token, lock_duration_seconds=LOCK_DURATION_SECONDS)


@router.get("/me", response_model=SessionState)
async def get_session_state(
    session: str = Depends(get_session_token),
    engine: ReservationEngine = Depends(get_engine),
    watchdog: ExpiryWatchdog = Depends(get_watchdog),
):
    """
    Current state of the caller's session.

    Doubles as reconnect recovery: a session coming back with seats still in
    CHECKOUT gets its countdown resumed, or its holds released if they ran out.
    """
    remaining = await watchdog.recover(session)
    chart = await engine.seats()
    selection = engine.selection(session)

    held = [seat for seat in chart if seat.status == SeatStatus.CHECKOUT and seat.locked_by == session]
    pending = [seat for seat in chart if seat.status == SeatStatus.PENDING and seat.locked_by == session]
    in_cart = {seat.id for seat in held} | set(selection)
    cart_total = sum((seat.price for seat in chart if seat.id in in_cart), Decimal("0"))

    return SessionState(
        session_token=session,
        held=[SeatPublic.from_seat(seat, session) for seat in held],
        pending=[SeatPublic.from_seat(seat, session) for seat in pending],
        selection=selection,
        remaining_seconds=remaining,
        cart_total=cart_total,
    )


@router.post("/me/selection/{seat_id}", response_model=SelectionResponse)
async def select_seat(
    seat_id: str,
    session: str = Depends(get_session_token),
    engine: ReservationEngine = Depends(get_engine),
):
    """Toggle a seat in the selection. Taken seats are refused with 409."""
    return SelectionResponse(selection=await engine.select_seat(session, seat_id))


@router.delete("/me/selection/{seat_id}", response_model=SelectionResponse)
async def deselect_seat(
    seat_id: str,
    session: str = Depends(get_session_token),
    engine: ReservationEngine = Depends(get_engine),
):
    return SelectionResponse(selection=engine.deselect_seat(session, seat_id))
