"""
Admin reporting: booking listing, export and financial stats.

Read-only views over the materialized chart. State changes (approve,
decline, reset, forced sale) live on the reservation engine.
"""

import csv
import io
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

from seatlock.core.errors import ReceiptNotFound
from seatlock.schemas.admin import AdminStats, ExportRow, ReceiptResponse
from seatlock.schemas.seat import Seat, SeatStatus
from seatlock.services.reservation_service import ReservationEngine


CSV_HEADERS = [
    "Table", "Seat", "ID", "Name", "Category", "Identifier", "Member", "Vegan",
    "Status", "Ref No", "Email", "Phone", "Car Plate", "Date", "Time",
]

_SEARCHABLE = ("name", "identifier", "ref_no", "email", "phone", "car_plate")


def _matches(seat: Seat, term: str) -> bool:
    if seat.payment_info is None:
        return False
    info = seat.payment_info.model_dump()
    return any(term in str(info.get(field) or "").lower() for field in _SEARCHABLE)


def filter_bookings(
    seats: Iterable[Seat],
    search: Optional[str] = None,
    status: Optional[SeatStatus] = None,
) -> list[Seat]:
    """Every non-AVAILABLE seat, optionally narrowed, sorted by table then seat."""
    term = (search or "").strip().lower()
    result = [
        seat for seat in seats
        if seat.status != SeatStatus.AVAILABLE
        and (status is None or seat.status == status)
        and (not term or _matches(seat, term))
    ]
    return sorted(result, key=lambda seat: (seat.table_id, seat.seat_number))


async def list_bookings(
    engine: ReservationEngine,
    search: Optional[str] = None,
    status: Optional[SeatStatus] = None,
) -> list[Seat]:
    return filter_bookings(await engine.seats(), search=search, status=status)


def _format_submitted(date: Optional[str], utc_offset_hours: int) -> tuple[str, str]:
    if not date:
        return "-", "-"
    try:
        submitted = datetime.fromisoformat(date.replace("Z", "+00:00"))
    except ValueError:
        return "-", "-"
    if submitted.tzinfo is None:
        submitted = submitted.replace(tzinfo=timezone.utc)
    local = submitted.astimezone(timezone(timedelta(hours=utc_offset_hours)))
    return local.strftime("%d/%m/%Y"), local.strftime("%H:%M")


def export_rows(seats: Iterable[Seat], utc_offset_hours: int = 8) -> list[ExportRow]:
    rows = []
    for seat in seats:
        info = seat.payment_info
        date, time_of_day = _format_submitted(info.date if info else None, utc_offset_hours)
        row = ExportRow(
            table=seat.table_id,
            seat=seat.seat_number,
            id=seat.id,
            status=seat.status.value,
            date=date,
            time=time_of_day,
        )
        if info is not None:
            row.name = info.name
            row.category = info.category.value
            row.identifier = info.identifier
            row.member = "Yes" if info.is_member else "No"
            row.vegan = "Yes" if info.is_vegan else "No"
            row.ref_no = info.ref_no
            row.email = info.email or ""
            row.phone = info.phone or ""
            row.car_plate = info.car_plate or ""
        rows.append(row)
    return rows


def export_csv(rows: Iterable[ExportRow]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for row in rows:
        writer.writerow([
            row.table, row.seat, row.id, row.name, row.category, row.identifier,
            row.member, row.vegan, row.status, row.ref_no, row.email, row.phone,
            row.car_plate, row.date, row.time,
        ])
    return buffer.getvalue()


def compute_stats(seats: list[Seat], member_discount: Decimal, deduction: Decimal = Decimal("0")) -> AdminStats:
    """
    Revenue counts SOLD seats only, each at its stored price less the member
    discount. Meal counts cover every occupied seat.
    """
    sold = [seat for seat in seats if seat.status == SeatStatus.SOLD]
    occupied = [seat for seat in seats if seat.status != SeatStatus.AVAILABLE]
    pending = [seat for seat in seats if seat.status == SeatStatus.PENDING]

    revenue = Decimal("0")
    for seat in sold:
        member = bool(seat.payment_info and seat.payment_info.is_member)
        revenue += max(seat.price - member_discount, Decimal("0")) if member else seat.price

    vegan = sum(1 for seat in occupied if seat.payment_info and seat.payment_info.is_vegan)
    return AdminStats(
        total_revenue=revenue,
        net_profit=revenue - deduction,
        sold_count=len(sold),
        total_capacity=len(seats),
        occupied_count=len(occupied),
        pending_count=len(pending),
        vegan=vegan,
        standard=len(occupied) - vegan,
    )


async def stats(engine: ReservationEngine, deduction: Decimal = Decimal("0")) -> AdminStats:
    return compute_stats(await engine.seats(), engine.member_discount, deduction)


async def receipt(engine: ReservationEngine, seat_id: str) -> ReceiptResponse:
    seat = await engine.seat(seat_id)
    if seat.payment_info is None:
        raise ReceiptNotFound(seat_id, seat.status.value)
    return ReceiptResponse(seat_id=seat.id, ref_no=seat.payment_info.ref_no, receipt=seat.payment_info.receipt)
