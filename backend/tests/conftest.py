"""
Pytest fixtures for the seat store, reservation engine, HTTP client and credentials.

Every test gets a fresh in-memory store and a controllable clock, so hold
expiry is tested by advancing time rather than sleeping. The app's services
are swapped on app.state per test; the ASGI transport does not run the
lifespan, so no watchdog task or Redis relay is started here.
"""

import os

os.environ["SEAT_STORE_BACKEND"] = "memory"
os.environ["REDIS_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["ADMIN_PASSPHRASE"] = "test-admin-passphrase"

from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from seatlock.core.config import get_settings
from seatlock.core.errors import StorageUnavailable
from seatlock.core.security import ADMIN_ROLE, create_access_token, new_session_token
from seatlock.main import Services, app, attach_services
from seatlock.services.interfaces.memory_seat_store import InMemorySeatStore
from seatlock.services.reservation_service import ReservationEngine
from seatlock.services.seating_service import PriceBook, SeatingLayout
from seatlock.services.watchdog_service import ExpiryWatchdog

ADMIN_PASSPHRASE = "test-admin-passphrase"
RECEIPT = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAE="


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_767_225_600_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> int:
        self.now += int(seconds * 1000)
        return self.now


class FlakyStore(InMemorySeatStore):
    """In-memory store whose reads or writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False

    async def snapshot(self):
        if self.fail_reads:
            raise StorageUnavailable()
        return await super().snapshot()

    async def batch_upsert(self, entries, precondition=None):
        if self.fail_writes:
            raise StorageUnavailable()
        await super().batch_upsert(entries, precondition=precondition)

    async def delete_one(self, seat_id, precondition=None):
        if self.fail_writes:
            raise StorageUnavailable()
        await super().delete_one(seat_id, precondition=precondition)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def engine(store: FlakyStore, clock: FakeClock) -> ReservationEngine:
    return ReservationEngine(
        store=store,
        layout=SeatingLayout(),
        prices=PriceBook.from_settings(get_settings()),
        clock=clock,
    )


@pytest.fixture
def watchdog(engine: ReservationEngine) -> ExpiryWatchdog:
    return ExpiryWatchdog(engine, tick_seconds=0.01)


@pytest_asyncio.fixture
async def client(store, engine, watchdog) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app wired to this test's store and engine."""
    attach_services(app, Services(store=store, engine=engine, watchdog=watchdog))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_token() -> str:
    return new_session_token()


@pytest.fixture
def other_session_token() -> str:
    return new_session_token()


@pytest.fixture
def session_headers(session_token: str) -> dict:
    return {"X-Session-Token": session_token}


@pytest.fixture
def other_session_headers(other_session_token: str) -> dict:
    return {"X-Session-Token": other_session_token}


@pytest.fixture
def admin_headers() -> dict:
    """Authorization headers with an admin bearer token."""
    return {"Authorization": f"Bearer {create_access_token('admin', ADMIN_ROLE)}"}


@pytest.fixture
def student() -> Callable[..., dict]:
    """Factory for STUDENT attendee details."""

    def make(name: str = "Alice Tan", identifier: str = "S1001", is_member: bool = False, is_vegan: bool = False):
        return {
            "category": "STUDENT",
            "name": name,
            "identifier": identifier,
            "is_member": is_member,
            "is_vegan": is_vegan,
        }

    return make


@pytest.fixture
def outsider() -> Callable[..., dict]:
    """Factory for OUTSIDER attendee details."""

    def make(**overrides):
        details = {
            "category": "OUTSIDER",
            "name": "Bob Lim",
            "identifier": "900101-07-1234",
            "car_plate": "pkb 1234",
            "email": "bob@example.com",
            "phone": "012-345 6789",
            "is_vegan": False,
        }
        details.update(overrides)
        return details

    return make
