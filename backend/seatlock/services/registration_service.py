"""
Registration validation and pricing.

Pure functions: nothing here touches the seat store. The reservation engine
calls these before writing so that a rejected submission never produces a
partial write.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from pydantic import TypeAdapter, ValidationError

from seatlock.core.errors import ValidationFailed
from seatlock.schemas.registration import AttendeeDetails, StudentDetails, VitroxianDetails, OutsiderDetails
from seatlock.schemas.seat import PaymentInfo

ParsedDetails = Union[StudentDetails, VitroxianDetails, OutsiderDetails]

_details_adapter = TypeAdapter(AttendeeDetails)


def _format_errors(exc: ValidationError, seat_id: Optional[str] = None) -> list[dict[str, Any]]:
    errors = []
    for err in exc.errors():
        entry = {
            "field": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
        }
        if seat_id is not None:
            entry["seat_id"] = seat_id
        errors.append(entry)
    return errors


def parse_attendee(data: Mapping[str, Any], seat_id: Optional[str] = None) -> ParsedDetails:
    try:
        return _details_adapter.validate_python(data)
    except ValidationError as e:
        raise ValidationFailed("Invalid attendee details", _format_errors(e, seat_id)) from e


def parse_details(raw: Mapping[str, Mapping[str, Any]]) -> dict[str, ParsedDetails]:
    """Validate every seat's details, collecting all problems before failing."""
    parsed: dict[str, ParsedDetails] = {}
    errors: list[dict[str, Any]] = []

    for seat_id, data in raw.items():
        try:
            parsed[seat_id] = parse_attendee(data, seat_id)
        except ValidationFailed as e:
            errors.extend(e.details["errors"])

    if errors:
        raise ValidationFailed("Invalid attendee details", errors)
    return parsed


def normalize_ref_no(ref_no: Optional[str]) -> str:
    ref_no = (ref_no or "").strip().upper()
    if not ref_no:
        raise ValidationFailed(
            "Payment reference number is required",
            [{"field": "ref_no", "message": "reference number is required"}],
        )
    return ref_no


def check_receipt(receipt: Optional[str], max_bytes: int) -> str:
    if not receipt:
        raise ValidationFailed(
            "Payment receipt is required",
            [{"field": "receipt", "message": "receipt is required"}],
        )
    size = len(receipt.encode("utf-8"))
    if size > max_bytes:
        raise ValidationFailed(
            "Payment receipt is too large",
            [{"field": "receipt", "message": f"receipt is {size} bytes, limit is {max_bytes}"}],
        )
    return receipt


def is_member(details: ParsedDetails) -> bool:
    return isinstance(details, StudentDetails) and details.is_member


def payable_amount(price: Decimal, details: Optional[ParsedDetails], member_discount: Decimal) -> Decimal:
    """Seat price after the member discount, never below zero."""
    if details is not None and is_member(details):
        return max(price - member_discount, Decimal("0"))
    return price


def build_payment_info(
    details: ParsedDetails,
    ref_no: str,
    receipt: Optional[str],
    submitted_at_ms: int,
) -> dict[str, Any]:
    """Stored form of the attendee and payment evidence for one seat."""
    info = PaymentInfo(
        category=details.category,
        name=details.name,
        identifier=details.identifier,
        car_plate=getattr(details, "car_plate", None),
        email=getattr(details, "email", None),
        phone=getattr(details, "phone", None),
        is_member=is_member(details),
        is_vegan=details.is_vegan,
        ref_no=ref_no,
        receipt=receipt,
        date=datetime.fromtimestamp(submitted_at_ms / 1000, tz=timezone.utc).isoformat(),
    )
    return info.model_dump(mode="json")
