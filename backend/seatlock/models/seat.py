"""
Seat record as persisted by the SQL seat store.

Key design decisions:
- One row per seat, keyed by the stable layout id ("t3-s5"); no lock table,
  the hold lives inline in (status, locked_by, locked_at)
- Every column except the id is nullable: a row only carries the fields that
  have been written, the rest come from the seating layout on read
- `schema_version` records the shape a row was last written with
- `locked_at` is epoch milliseconds so expiry math never crosses timezones
"""

from sqlalchemy import BigInteger, CheckConstraint, Column, Index, Integer, JSON, Numeric, String

from seatlock.db.base import Base, TimestampMixin
from seatlock.services.interfaces.seat_store import SEAT_FIELDS


class SeatRecord(Base, TimestampMixin):
    __tablename__ = "seats"

    id = Column(String(32), primary_key=True)
    table_id = Column(Integer, nullable=True)
    seat_number = Column(Integer, nullable=True)
    tier = Column(String(16), nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    status = Column(String(16), nullable=True)
    locked_by = Column(String(128), nullable=True)
    locked_at = Column(BigInteger, nullable=True)
    payment_info = Column(JSON, nullable=True)
    schema_version = Column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("price IS NULL OR price >= 0", name="check_seat_price_non_negative"),
        # Lock fields are set together or not at all
        CheckConstraint(
            "(locked_by IS NULL) = (locked_at IS NULL)",
            name="check_seat_lock_fields_paired",
        ),
        # Holder lookups during reconnect recovery
        Index("ix_seats_locked_by", "locked_by"),
        Index("ix_seats_status", "status"),
    )

    def to_fields(self) -> dict:
        """Stored fields only; unset columns are omitted."""
        fields = {}
        for name in SEAT_FIELDS:
            value = getattr(self, name)
            if value is not None:
                fields[name] = value
        return fields

    def __repr__(self) -> str:
        return f"<SeatRecord(id={self.id}, status={self.status}, locked_by={self.locked_by})>"
