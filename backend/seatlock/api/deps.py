"""
Dependencies resolving the per-application services built at startup.
"""

from fastapi import Request

from seatlock.services.reservation_service import ReservationEngine
from seatlock.services.watchdog_service import ExpiryWatchdog


def get_engine(request: Request) -> ReservationEngine:
    return request.app.state.engine


def get_watchdog(request: Request) -> ExpiryWatchdog:
    return request.app.state.watchdog
