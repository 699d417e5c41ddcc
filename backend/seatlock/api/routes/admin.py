"""
Admin endpoints. Every route except login requires an admin bearer token.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response

from seatlock.api.deps import get_engine
from seatlock.core.config import get_settings
from seatlock.core.logging import get_logger
from seatlock.core.metrics import record_admin_action
from seatlock.core.security import ADMIN_ROLE, create_access_token, require_admin, verify_admin_passphrase
from seatlock.schemas.admin import (
    AdminLogin, AdminStats, ExportRow, ForceSaleRequest, ReceiptResponse, TierPrices, Token,
)
from seatlock.schemas.seat import SeatAdminView, SeatStatus
from seatlock.services import admin_service
from seatlock.services.reservation_service import ReservationEngine

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/login", response_model=Token)
async def login(login_data: AdminLogin):
    """Exchange the admin passphrase for a short-lived admin token."""
    if not verify_admin_passphrase(login_data.passphrase):
        logger.warning("admin_login_failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid passphrase")
    logger.info("admin_login")
    return Token(access_token=create_access_token("admin", ADMIN_ROLE))


@router.get("/bookings", response_model=list[SeatAdminView])
async def list_bookings(
    search: Optional[str] = Query(default=None, max_length=100),
    seat_status: Optional[SeatStatus] = Query(default=None, alias="status"),
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    """Occupied seats sorted by table then seat, optionally filtered."""
    seats = await admin_service.list_bookings(engine, search=search, status=seat_status)
    return [SeatAdminView.from_seat(seat) for seat in seats]


@router.post("/seats/{seat_id}/approve", response_model=SeatAdminView)
async def approve_seat(
    seat_id: str,
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    return SeatAdminView.from_seat(await engine.approve(seat_id))


@router.post("/seats/{seat_id}/decline", response_model=SeatAdminView)
async def decline_seat(
    seat_id: str,
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    return SeatAdminView.from_seat(await engine.decline(seat_id))


@router.delete("/seats/{seat_id}", response_model=SeatAdminView)
async def reset_seat(
    seat_id: str,
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    """Delete the seat's booking outright; it returns as AVAILABLE."""
    return SeatAdminView.from_seat(await engine.reset(seat_id))


@router.put("/seats/{seat_id}/sale", response_model=SeatAdminView)
async def force_sale(
    seat_id: str,
    sale: ForceSaleRequest,
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    """Record a sale made outside the booking flow."""
    seat = await engine.force_sale(seat_id, sale.details, sale.ref_no, sale.receipt)
    return SeatAdminView.from_seat(seat)


@router.get("/seats/{seat_id}/receipt", response_model=ReceiptResponse)
async def get_receipt(
    seat_id: str,
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    return await admin_service.receipt(engine, seat_id)


@router.get("/export", response_model=list[ExportRow])
async def export_bookings(
    search: Optional[str] = Query(default=None, max_length=100),
    seat_status: Optional[SeatStatus] = Query(default=None, alias="status"),
    export_format: str = Query(default="csv", alias="format", pattern="^(csv|json)$"),
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    """Booking manifest as CSV (default) or JSON rows."""
    seats = await admin_service.list_bookings(engine, search=search, status=seat_status)
    rows = admin_service.export_rows(seats, get_settings().EXPORT_UTC_OFFSET_HOURS)
    logger.info("bookings_exported", rows=len(rows), format=export_format)

    if export_format == "json":
        return rows
    return Response(
        content=admin_service.export_csv(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="bookings.csv"'},
    )


@router.get("/stats", response_model=AdminStats)
async def get_stats(
    deduction: Decimal = Query(default=Decimal("0"), ge=0),
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    """Revenue, net profit after `deduction`, occupancy and meal counts."""
    return await admin_service.stats(engine, deduction)


@router.get("/prices", response_model=TierPrices)
async def get_prices(
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    return TierPrices(prices=engine.prices.as_dict())


@router.put("/prices", response_model=TierPrices)
async def update_prices(
    changes: TierPrices,
    _: str = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
):
    """Change tier prices. Seats that already have a stored price keep it."""
    prices = engine.prices.update(changes.prices)
    record_admin_action("update_prices")
    return TierPrices(prices=prices)
