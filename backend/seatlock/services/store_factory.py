"""
Seat store factory.
Configures which seat store backend to use.
"""

from typing import Optional

from seatlock.core.config import Settings, get_settings
from seatlock.db.session import create_engine
from seatlock.services.interfaces.memory_seat_store import InMemorySeatStore
from seatlock.services.interfaces.seat_store import SeatStore
from seatlock.services.sql_seat_store import SqlSeatStore


def create_seat_store(settings: Optional[Settings] = None) -> SeatStore:
    """
    Build the configured seat store.

    Backend selection via SEAT_STORE_BACKEND:
    - memory: InMemorySeatStore (single worker, tests)
    - sql: SqlSeatStore on DATABASE_URL (shared between workers)
    """
    settings = settings or get_settings()
    backend = settings.SEAT_STORE_BACKEND.lower()

    if backend == "memory":
        return InMemorySeatStore()
    if backend == "sql":
        return SqlSeatStore(create_engine(settings.DATABASE_URL))
    raise ValueError(f"Unknown SEAT_STORE_BACKEND: {settings.SEAT_STORE_BACKEND!r}")
