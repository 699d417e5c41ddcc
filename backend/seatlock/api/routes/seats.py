"""
Seat chart endpoints: snapshot reads and the live WebSocket stream.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from seatlock.api.deps import get_engine
from seatlock.core.errors import StorageUnavailable
from seatlock.core.logging import get_logger
from seatlock.core.security import get_optional_session_token, is_valid_session_token
from seatlock.schemas.seat import SeatPublic, SeatSnapshot
from seatlock.services.interfaces.seat_store import Snapshot
from seatlock.services.reservation_service import ReservationEngine

logger = get_logger(__name__)
router = APIRouter(prefix="/seats", tags=["Seats"])


def build_snapshot(engine: ReservationEngine, snapshot: Snapshot, viewer: Optional[str]) -> SeatSnapshot:
    return SeatSnapshot(
        seats=[SeatPublic.from_seat(seat, viewer) for seat in engine.chart(snapshot)],
        generated_at=engine.clock(),
    )


@router.get("", response_model=SeatSnapshot)
async def list_seats(
    session: Optional[str] = Depends(get_optional_session_token),
    engine: ReservationEngine = Depends(get_engine),
):
    """Every seat of the layout with its current status, in table order."""
    return build_snapshot(engine, await engine.store.snapshot(), session)


@router.get("/{seat_id}", response_model=SeatPublic)
async def get_seat(
    seat_id: str,
    session: Optional[str] = Depends(get_optional_session_token),
    engine: ReservationEngine = Depends(get_engine),
):
    return SeatPublic.from_seat(await engine.seat(seat_id), session)


@router.websocket("/stream")
async def seat_stream(websocket: WebSocket, session: Optional[str] = Query(default=None)):
    """
    Live seat chart.

    Sends the full chart on connect and again after every change. Only the
    newest chart is sent when changes arrive faster than the client reads.
    Pass the session token as ?session= to get `is_mine` flags; "ping" is
    answered with "pong".
    """
    engine: ReservationEngine = websocket.app.state.engine
    viewer = session if session and is_valid_session_token(session) else None
    await websocket.accept()

    pending: asyncio.Queue = asyncio.Queue()

    async def on_change(snapshot: Snapshot) -> None:
        pending.put_nowait(snapshot)

    try:
        unsubscribe = await engine.store.subscribe(on_change)
    except StorageUnavailable:
        await websocket.close(code=1011, reason="Seat storage unavailable")
        return

    async def push() -> None:
        while True:
            snapshot = await pending.get()
            while not pending.empty():
                snapshot = pending.get_nowait()
            await websocket.send_text(build_snapshot(engine, snapshot, viewer).model_dump_json())

    sender = asyncio.create_task(push())
    logger.info("seat_stream_opened")
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        sender.cancel()
        try:
            await sender
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass
        logger.info("seat_stream_closed")
