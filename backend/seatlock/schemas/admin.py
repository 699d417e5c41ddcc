"""
Pydantic schemas for the admin control surface.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from seatlock.schemas.registration import AttendeeDetails
from seatlock.schemas.seat import SeatTier


class AdminLogin(BaseModel):
    passphrase: str = Field(..., min_length=1, max_length=256)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ForceSaleRequest(BaseModel):
    details: AttendeeDetails
    ref_no: str = Field(..., min_length=1, max_length=100)
    receipt: Optional[str] = None


class TierPrices(BaseModel):
    prices: dict[SeatTier, Decimal]


class ExportRow(BaseModel):
    table: int
    seat: int
    id: str
    name: str = ""
    category: str = ""
    identifier: str = ""
    member: str = "No"
    vegan: str = "No"
    status: str
    ref_no: str = ""
    email: str = ""
    phone: str = ""
    car_plate: str = ""
    date: str = "-"
    time: str = "-"


class AdminStats(BaseModel):
    total_revenue: Decimal
    net_profit: Decimal
    sold_count: int
    total_capacity: int
    occupied_count: int
    pending_count: int
    vegan: int
    standard: int


class ReceiptResponse(BaseModel):
    seat_id: str
    ref_no: str
    receipt: Optional[str]
