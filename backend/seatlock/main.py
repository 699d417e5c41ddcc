"""
Seat Reservation API - Main Application Entry Point

A seat booking backend for a single banquet event:
- Batch seat holds with a five-minute expiry and a single-holder guarantee
- Registration and payment proof moving seats to PENDING for admin review
- Live seat chart over WebSocket, relayed across workers through Redis
- Structured logging with request and session correlation
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from seatlock.api.middleware import RequestLoggingMiddleware
from seatlock.api.router import api_router
from seatlock.core.config import Settings, get_settings
from seatlock.core.errors import ReservationError, reservation_error_handler
from seatlock.core.logging import get_logger, setup_logging
from seatlock.core.metrics import metrics_endpoint
from seatlock.services.broadcast_service import SeatChangeRelay, close_redis, get_redis
from seatlock.services.interfaces.seat_store import SeatStore
from seatlock.services.reservation_service import ReservationEngine
from seatlock.services.store_factory import create_seat_store
from seatlock.services.watchdog_service import ExpiryWatchdog

settings = get_settings()


@dataclass
class Services:
    store: SeatStore
    engine: ReservationEngine
    watchdog: ExpiryWatchdog
    relay: Optional[SeatChangeRelay] = None


def build_services(settings: Settings, store: Optional[SeatStore] = None) -> Services:
    """Wire the store, engine and watchdog for one application instance."""
    store = store or create_seat_store(settings)
    engine = ReservationEngine.from_settings(store, settings)
    watchdog = ExpiryWatchdog(engine, tick_seconds=settings.WATCHDOG_TICK_SECONDS)
    return Services(store=store, engine=engine, watchdog=watchdog)


def attach_services(app: FastAPI, services: Services) -> None:
    app.state.store = services.store
    app.state.engine = services.engine
    app.state.watchdog = services.watchdog
    app.state.relay_active = services.relay is not None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        store=settings.SEAT_STORE_BACKEND,
    )

    services = build_services(settings)
    await services.store.connect()
    attach_services(app, services)

    redis_client = await get_redis()
    if redis_client:
        services.relay = SeatChangeRelay(services.store, redis_client, settings.REDIS_CHANNEL)
        await services.relay.start()
        app.state.relay_active = True
    else:
        logger.warning("redis_unavailable", message="Seat changes are only pushed to this worker's clients")

    await services.watchdog.start()

    yield

    await services.watchdog.stop()
    if services.relay:
        await services.relay.stop()
    await close_redis()
    await services.store.close()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Seat reservation API with expiring holds and admin approval",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_exception_handler(ReservationError, reservation_error_handler)

# Routes
app.include_router(api_router)
app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["Health"], include_in_schema=False)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "store": settings.SEAT_STORE_BACKEND,
        "relay": "enabled" if getattr(app.state, "relay_active", False) else "disabled",
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
