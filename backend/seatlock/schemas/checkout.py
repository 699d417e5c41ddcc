"""
Pydantic schemas for sessions, selection and checkout.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from seatlock.schemas.seat import SeatPublic


class SessionCreated(BaseModel):
    session_token: str
    lock_duration_seconds: int


class SessionState(BaseModel):
    session_token: str
    held: list[SeatPublic]
    pending: list[SeatPublic]
    selection: list[str]
    remaining_seconds: int
    cart_total: Decimal


class SelectionResponse(BaseModel):
    selection: list[str]


class CheckoutRequest(BaseModel):
    # Omit to check out the session's current selection
    seat_ids: Optional[list[str]] = Field(default=None, max_length=50)


class CheckoutResponse(BaseModel):
    seats: list[SeatPublic]
    locked_at: int
    expires_at: int
    remaining_seconds: int


class CancelRequest(BaseModel):
    # Omit to release every seat the session holds
    seat_ids: Optional[list[str]] = None


class CancelResponse(BaseModel):
    released: list[str]
