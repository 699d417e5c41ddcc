"""
Tests for the expiry watchdog: countdowns, ticks, recovery and the loop.
"""

import asyncio

import pytest

from seatlock.schemas.seat import SeatStatus
from seatlock.services.interfaces.memory_seat_store import InMemorySeatStore
from seatlock.services.reservation_service import LOCK_DURATION_SECONDS, ReservationEngine
from seatlock.services.seating_service import PriceBook, SeatingLayout
from seatlock.services.watchdog_service import ExpiryWatchdog

ALICE = "alice-session-0001"
BOB = "bob-session-00002"


def test_arm_and_remaining(watchdog, clock):
    watchdog.arm(ALICE, clock.now)
    assert watchdog.is_armed(ALICE)
    assert watchdog.remaining(ALICE) == 300

    clock.advance(100.5)
    assert watchdog.remaining(ALICE) == 200

    clock.advance(LOCK_DURATION_SECONDS)
    assert watchdog.remaining(ALICE) == 0


def test_cancel_and_unknown_session(watchdog, clock):
    watchdog.arm(ALICE, clock.now)
    watchdog.cancel(ALICE)
    watchdog.cancel(ALICE)
    assert not watchdog.is_armed(ALICE)
    assert watchdog.remaining(BOB) == 0


def test_rearm_restarts_countdown(watchdog, clock):
    watchdog.arm(ALICE, clock.now)
    clock.advance(200)
    watchdog.arm(ALICE, clock.now)
    assert watchdog.remaining(ALICE) == 300


@pytest.mark.asyncio
async def test_tick_releases_due_sessions(engine, watchdog, clock):
    seats = await engine.checkout(ALICE, ["t1-s1", "t1-s2"])
    watchdog.arm(ALICE, seats[0].locked_at)

    clock.advance(LOCK_DURATION_SECONDS - 1)
    assert await watchdog.tick() == []
    assert watchdog.is_armed(ALICE)

    clock.advance(1)
    released = await watchdog.tick()
    assert sorted(released) == ["t1-s1", "t1-s2"]
    assert not watchdog.is_armed(ALICE)
    assert (await engine.seat("t1-s1")).status == SeatStatus.AVAILABLE


@pytest.mark.asyncio
async def test_tick_sweeps_holds_without_countdown(engine, watchdog, clock):
    """Holds written by a session this worker never armed still expire."""
    await engine.checkout(BOB, ["t4-s4"])
    clock.advance(LOCK_DURATION_SECONDS)

    assert await watchdog.tick() == ["t4-s4"]
    assert (await engine.seat("t4-s4")).locked_by is None


@pytest.mark.asyncio
async def test_tick_survives_storage_failure(engine, store, watchdog, clock):
    seats = await engine.checkout(ALICE, ["t1-s1"])
    watchdog.arm(ALICE, seats[0].locked_at)
    clock.advance(LOCK_DURATION_SECONDS)

    store.fail_writes = True
    assert await watchdog.tick() == []
    assert not watchdog.is_armed(ALICE)

    # the next tick's sweep picks the hold up
    store.fail_writes = False
    assert await watchdog.tick() == ["t1-s1"]


@pytest.mark.asyncio
async def test_tick_keeps_holds_refreshed_during_release(clock):
    """Scenario: the session checks out again while its expiry is being processed."""
    engine = ReservationEngine(
        InMemorySeatStore(write_delay=0.01), SeatingLayout(), PriceBook.from_settings(), clock=clock,
    )
    watchdog = ExpiryWatchdog(engine)
    seats = await engine.checkout(ALICE, ["t1-s1", "t1-s2"])
    watchdog.arm(ALICE, seats[0].locked_at)
    clock.advance(LOCK_DURATION_SECONDS)

    async def checkout_again():
        seats = await engine.checkout(ALICE, ["t1-s3"])
        watchdog.arm(ALICE, seats[0].locked_at)
        return seats

    # the checkout reads its snapshot first, the tick writes after it
    checkout = asyncio.create_task(checkout_again())
    await asyncio.sleep(0)
    assert await watchdog.tick() == []
    held = await checkout

    assert sorted(seat.id for seat in held) == ["t1-s1", "t1-s2", "t1-s3"]
    assert sorted(seat.id for seat in await engine.held_by(ALICE)) == ["t1-s1", "t1-s2", "t1-s3"]
    assert watchdog.is_armed(ALICE)
    assert watchdog.remaining(ALICE) == 300


@pytest.mark.asyncio
async def test_tick_forgets_idle_selections(engine, watchdog, clock):
    await engine.select_seat(ALICE, "t2-s1")
    clock.advance(100)
    await engine.select_seat(BOB, "t2-s2")

    clock.advance(LOCK_DURATION_SECONDS - 100)
    await watchdog.tick()
    assert engine.selection(ALICE) == []
    assert engine.selection(BOB) == ["t2-s2"]
    assert len(engine.selections) == 1

    clock.advance(100)
    await watchdog.tick()
    assert len(engine.selections) == 0


@pytest.mark.asyncio
async def test_recover_without_holds(watchdog):
    assert await watchdog.recover(ALICE) == 0
    assert not watchdog.is_armed(ALICE)


@pytest.mark.asyncio
async def test_recover_resumes_countdown(engine, watchdog, clock):
    """Scenario: a reconnecting session gets its remaining time back."""
    await engine.checkout(ALICE, ["t1-s1"])
    clock.advance(100)

    assert await watchdog.recover(ALICE) == 200
    assert watchdog.is_armed(ALICE)
    assert watchdog.remaining(ALICE) == 200


@pytest.mark.asyncio
async def test_recover_uses_oldest_hold(store, watchdog, clock):
    await store.upsert_one("t1-s1", {"status": "CHECKOUT", "locked_by": ALICE, "locked_at": clock.now - 120_000})
    await store.upsert_one("t1-s2", {"status": "CHECKOUT", "locked_by": ALICE, "locked_at": clock.now})

    assert await watchdog.recover(ALICE) == 180


@pytest.mark.asyncio
async def test_recover_releases_expired_holds(engine, watchdog, clock):
    await engine.checkout(ALICE, ["t1-s1"])
    clock.advance(LOCK_DURATION_SECONDS + 5)

    assert await watchdog.recover(ALICE) == 0
    assert not watchdog.is_armed(ALICE)
    assert (await engine.seat("t1-s1")).status == SeatStatus.AVAILABLE


@pytest.mark.asyncio
async def test_loop_releases_expired_holds(engine, watchdog, clock):
    await engine.checkout(ALICE, ["t2-s2"])
    clock.advance(LOCK_DURATION_SECONDS)

    await watchdog.start()
    try:
        for _ in range(50):
            await asyncio.sleep(0.01)
            if (await engine.seat("t2-s2")).status == SeatStatus.AVAILABLE:
                break
    finally:
        await watchdog.stop()

    assert (await engine.seat("t2-s2")).status == SeatStatus.AVAILABLE


@pytest.mark.asyncio
async def test_stop_without_start(watchdog):
    await watchdog.stop()
