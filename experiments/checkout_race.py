#!/usr/bin/env python3
"""
Checkout race simulation - many sessions grabbing the same seats at once.
Runs the real reservation engine against the in-memory store, no server.

Compares:
  guarded:   snapshot check + compare-and-set inside the store's atomic unit
  unguarded: snapshot check only (last writer wins)

Install the package first (pip install -e .) so `seatlock` is importable.
"""

import asyncio
import random
import time
from collections import Counter
from decimal import Decimal

from seatlock.core.errors import ConflictLost
from seatlock.schemas.seat import SeatStatus, SeatTier
from seatlock.services.interfaces.memory_seat_store import InMemorySeatStore
from seatlock.services.reservation_service import ReservationEngine
from seatlock.services.seating_service import PriceBook, SeatingLayout

SESSIONS = 100
HOT_SEATS = [f"t1-s{n}" for n in range(1, 7)]


def build_engine(guard: bool) -> ReservationEngine:
    prices = PriceBook({
        SeatTier.PLATINUM: Decimal("0.00"),
        SeatTier.GOLD: Decimal("10.88"),
        SeatTier.SILVER: Decimal("8.88"),
    })
    # Delay between a client's read and its write landing
    store = InMemorySeatStore(write_delay=0.002)
    return ReservationEngine(store, SeatingLayout(), prices, guard_conflicts=guard)


async def run_test(guard: bool):
    label = "guarded" if guard else "unguarded"
    print(f"\n{'='*60}")
    print(f"Strategy: {label.upper()}")
    print(f"Sessions: {SESSIONS} | Seats: {len(HOT_SEATS)}")
    print(f"{'='*60}\n")

    engine = build_engine(guard)
    told_success: dict[str, list[str]] = {}
    conflicts = 0
    response_times = []

    async def attempt(session: str):
        nonlocal conflicts
        wanted = random.sample(HOT_SEATS, k=random.randint(1, 2))
        await asyncio.sleep(random.uniform(0, 0.003))
        start = time.perf_counter()
        try:
            await engine.checkout(session, wanted)
            told_success[session] = wanted
        except ConflictLost:
            conflicts += 1
        response_times.append((time.perf_counter() - start) * 1000)

    start_time = time.perf_counter()
    await asyncio.gather(*(attempt(f"session-{i:04d}") for i in range(SESSIONS)))
    total_time = time.perf_counter() - start_time

    chart = {seat.id: seat for seat in await engine.seats()}
    holders = Counter(chart[seat_id].locked_by for seat_id in HOT_SEATS if chart[seat_id].status == SeatStatus.CHECKOUT)

    # A session told "success" that does not hold every seat it asked for lost its hold silently
    silently_lost = [
        session for session, seats in told_success.items()
        if any(chart[seat_id].locked_by != session for seat_id in seats)
    ]

    times = sorted(response_times)
    print(f"Time:           {total_time:.3f}s")
    print(f"Told success:   {len(told_success)}")
    print(f"Conflicts:      {conflicts}")
    print(f"Final holders:  {len(holders)}")
    print(f"Silently lost:  {len(silently_lost)}")
    if times:
        print(f"\nResponse times:")
        print(f"  Avg: {sum(times)/len(times):.1f}ms")
        print(f"  P95: {times[int(len(times)*0.95)]:.1f}ms")

    print(f"\n{'='*60}")
    if not silently_lost:
        print("✓ PASS: every confirmed hold is still held")
    else:
        print(f"✗ FAIL: {len(silently_lost)} sessions were told they hold seats they do not")
    print(f"{'='*60}")


async def main():
    print("\n" + "="*60)
    print("CHECKOUT RACE SIMULATION")
    print("="*60)

    await run_test(guard=True)
    await run_test(guard=False)

    print("\n" + "="*60)
    print("SUMMARY")
    print("="*60)
    print("Guarded:   losers get CONFLICT_LOST, winners keep their seats")
    print("Unguarded: several sessions 'win' the same seat, last write sticks")
    print("="*60 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
