"""
Attendee details as a tagged union keyed by category.

Each category carries exactly the fields it requires, so validating a
registration is just parsing it. Membership only exists on STUDENT.
"""

import re
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from seatlock.schemas.seat import SeatPublic

_MIN_NAME_LENGTH = 3
_MIN_IC_LENGTH = 6
_MIN_PHONE_DIGITS = 8


def _required(value: str, field: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field} is required")
    return value


class _AttendeeBase(BaseModel):
    name: str
    is_vegan: bool = False

    @field_validator("name")
    @classmethod
    def _name_long_enough(cls, v: str) -> str:
        v = v.strip()
        if len(v) < _MIN_NAME_LENGTH:
            raise ValueError(f"name must be at least {_MIN_NAME_LENGTH} characters")
        return v


class StudentDetails(_AttendeeBase):
    category: Literal["STUDENT"]
    identifier: str
    is_member: bool = False

    @field_validator("identifier")
    @classmethod
    def _identifier_present(cls, v: str) -> str:
        return _required(v, "student id")


class VitroxianDetails(_AttendeeBase):
    category: Literal["VITROXIAN"]
    identifier: str

    @field_validator("identifier")
    @classmethod
    def _identifier_present(cls, v: str) -> str:
        return _required(v, "staff id")


class OutsiderDetails(_AttendeeBase):
    category: Literal["OUTSIDER"]
    identifier: str
    car_plate: str
    email: str
    phone: str

    @field_validator("identifier")
    @classmethod
    def _ic_long_enough(cls, v: str) -> str:
        v = v.strip()
        if len(v) < _MIN_IC_LENGTH:
            raise ValueError(f"IC number must be at least {_MIN_IC_LENGTH} characters")
        return v

    @field_validator("car_plate")
    @classmethod
    def _plate_present(cls, v: str) -> str:
        return _required(v, "car plate").upper()

    @field_validator("email")
    @classmethod
    def _email_has_at(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v

    @field_validator("phone")
    @classmethod
    def _phone_has_digits(cls, v: str) -> str:
        v = v.strip()
        if len(re.sub(r"\D", "", v)) < _MIN_PHONE_DIGITS:
            raise ValueError(f"phone must contain at least {_MIN_PHONE_DIGITS} digits")
        return v


AttendeeDetails = Annotated[
    Union[StudentDetails, VitroxianDetails, OutsiderDetails],
    Field(discriminator="category"),
]


class RegistrationRequest(BaseModel):
    # Parsed by the registration service so every rule violation reports the same way
    details: dict[str, dict[str, Any]]
    ref_no: str
    receipt: str


class RegistrationResponse(BaseModel):
    seats: list[SeatPublic]
    total: Decimal
