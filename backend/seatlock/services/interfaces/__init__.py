from seatlock.services.interfaces.seat_store import SeatStore, SEAT_FIELDS
from seatlock.services.interfaces.memory_seat_store import InMemorySeatStore

__all__ = ["SeatStore", "SEAT_FIELDS", "InMemorySeatStore"]
