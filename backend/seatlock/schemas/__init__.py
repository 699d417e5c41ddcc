from seatlock.schemas.seat import (
    SeatStatus, SeatTier, AttendeeCategory, PaymentInfo, Seat, SeatPublic, SeatAdminView, SeatSnapshot,
)
from seatlock.schemas.registration import (
    StudentDetails, VitroxianDetails, OutsiderDetails, AttendeeDetails,
    RegistrationRequest, RegistrationResponse,
)
from seatlock.schemas.checkout import (
    SessionCreated, SessionState, SelectionResponse,
    CheckoutRequest, CheckoutResponse, CancelRequest, CancelResponse,
)
from seatlock.schemas.admin import (
    AdminLogin, Token, ForceSaleRequest, TierPrices, ExportRow, AdminStats, ReceiptResponse,
)

__all__ = [
    "SeatStatus", "SeatTier", "AttendeeCategory", "PaymentInfo", "Seat", "SeatPublic", "SeatAdminView",
    "SeatSnapshot",
    "StudentDetails", "VitroxianDetails", "OutsiderDetails", "AttendeeDetails",
    "RegistrationRequest", "RegistrationResponse",
    "SessionCreated", "SessionState", "SelectionResponse",
    "CheckoutRequest", "CheckoutResponse", "CancelRequest", "CancelResponse",
    "AdminLogin", "Token", "ForceSaleRequest", "TierPrices", "ExportRow", "AdminStats", "ReceiptResponse",
]
