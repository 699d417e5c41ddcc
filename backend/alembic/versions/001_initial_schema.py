"""Initial schema: seats table with inline hold fields.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One row per seat, created on first write. Everything but the id is
    # nullable: unwritten fields are seeded from the layout on read.
    op.create_table(
        "seats",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("table_id", sa.Integer(), nullable=True),
        sa.Column("seat_number", sa.Integer(), nullable=True),
        sa.Column("tier", sa.String(16), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(16), nullable=True),
        sa.Column("locked_by", sa.String(128), nullable=True),
        sa.Column("locked_at", sa.BigInteger(), nullable=True),
        sa.Column("payment_info", sa.JSON(), nullable=True),
        sa.Column("schema_version", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price IS NULL OR price >= 0", name="check_seat_price_non_negative"),
        sa.CheckConstraint("(locked_by IS NULL) = (locked_at IS NULL)", name="check_seat_lock_fields_paired"),
    )
    # Reconnect recovery looks seats up by holder
    op.create_index("ix_seats_locked_by", "seats", ["locked_by"])
    # Admin listing and the expiry sweep filter by status
    op.create_index("ix_seats_status", "seats", ["status"])


def downgrade() -> None:
    op.drop_index("ix_seats_status", table_name="seats")
    op.drop_index("ix_seats_locked_by", table_name="seats")
    op.drop_table("seats")
