"""
Pydantic schemas for seat records and snapshots.
"""

import enum
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class SeatStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    CHECKOUT = "CHECKOUT"
    PENDING = "PENDING"
    SOLD = "SOLD"
    # Reserved; never produced by the engine
    SELECTED = "SELECTED"
    BLOCKED = "BLOCKED"


class SeatTier(str, enum.Enum):
    PLATINUM = "PLATINUM"
    GOLD = "GOLD"
    SILVER = "SILVER"


class AttendeeCategory(str, enum.Enum):
    VITROXIAN = "VITROXIAN"
    STUDENT = "STUDENT"
    OUTSIDER = "OUTSIDER"


class PaymentInfo(BaseModel):
    """Attendee and payment evidence attached when a seat enters PENDING or SOLD."""

    category: AttendeeCategory
    name: str
    identifier: str
    car_plate: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_member: bool = False
    is_vegan: bool = False
    ref_no: str
    receipt: Optional[str] = None
    date: str


class Seat(BaseModel):
    """Full materialized seat record (layout seed merged with stored fields)."""

    id: str
    table_id: int = Field(..., gt=0)
    seat_number: int = Field(..., gt=0)
    tier: SeatTier
    price: Decimal = Field(..., ge=0)
    status: SeatStatus = SeatStatus.AVAILABLE
    locked_by: Optional[str] = None
    locked_at: Optional[int] = None
    payment_info: Optional[PaymentInfo] = None


class SeatPublic(BaseModel):
    """What every client may see: no holder tokens, no attendee data."""

    id: str
    table_id: int
    seat_number: int
    tier: SeatTier
    price: Decimal
    status: SeatStatus
    locked_at: Optional[int] = None
    is_mine: bool = False

    @classmethod
    def from_seat(cls, seat: Seat, viewer: Optional[str] = None) -> "SeatPublic":
        return cls(
            id=seat.id,
            table_id=seat.table_id,
            seat_number=seat.seat_number,
            tier=seat.tier,
            price=seat.price,
            status=seat.status,
            locked_at=seat.locked_at,
            is_mine=viewer is not None and seat.locked_by == viewer,
        )


class SeatAdminView(Seat):
    """Admin view: the full record with the receipt blob replaced by a flag."""

    has_receipt: bool = False

    @classmethod
    def from_seat(cls, seat: Seat) -> "SeatAdminView":
        data = seat.model_dump()
        has_receipt = bool(seat.payment_info and seat.payment_info.receipt)
        if data.get("payment_info"):
            data["payment_info"]["receipt"] = None
        return cls(**data, has_receipt=has_receipt)


class SeatSnapshot(BaseModel):
    seats: list[SeatPublic]
    generated_at: int
