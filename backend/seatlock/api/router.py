"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from seatlock.api.routes import admin, checkout, seats, sessions

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(sessions.router)
api_router.include_router(seats.router)
api_router.include_router(checkout.router)
api_router.include_router(admin.router)
