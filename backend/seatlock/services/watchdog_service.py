"""
Expiry watchdog: one scheduler tick driving every session's hold countdown.

Instead of a timer per session, the watchdog keeps each session's expiry
timestamp and a single asyncio task wakes every WATCHDOG_TICK_SECONDS:

  1. Sessions whose countdown reached zero get their CHECKOUT seats released
     and their countdown dropped
  2. A sweep releases any other expired hold in the store (sessions that
     disconnected, or holds written by another worker)
  3. Seat selections untouched for a full hold duration are forgotten

Remaining time is computed on demand from the stored expiry, so nothing
decrements a counter and a slow tick never skews the countdown.

Cleanup failures are logged and retried by the next tick's sweep; they never
stop the loop. Stopping the watchdog lets an in-flight tick finish its
writes.
"""

import asyncio
from typing import Callable, Optional

from seatlock.core.errors import ReservationError
from seatlock.core.logging import get_logger
from seatlock.core.metrics import active_countdowns
from seatlock.services.reservation_service import (
    LOCK_DURATION_MS, ReservationEngine, remaining_seconds,
)

logger = get_logger(__name__)


class ExpiryWatchdog:
    def __init__(
        self,
        engine: ReservationEngine,
        tick_seconds: float = 1.0,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.engine = engine
        self.tick_seconds = tick_seconds
        self.clock = clock or engine.clock
        self._deadlines: dict[str, int] = {}
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    # Countdowns

    def arm(self, session: str, locked_at: int) -> None:
        """Start (or restart) the session's countdown from `locked_at`."""
        self._deadlines[session] = locked_at + LOCK_DURATION_MS
        active_countdowns.set(len(self._deadlines))

    def cancel(self, session: str) -> None:
        if self._deadlines.pop(session, None) is not None:
            active_countdowns.set(len(self._deadlines))

    def is_armed(self, session: str) -> bool:
        return session in self._deadlines

    def remaining(self, session: str, now: Optional[int] = None) -> int:
        deadline = self._deadlines.get(session)
        if deadline is None:
            return 0
        now = self.clock() if now is None else now
        return remaining_seconds(deadline - LOCK_DURATION_MS, now)

    async def recover(self, session: str) -> int:
        """
        Resume a reconnecting session's countdown from the store.

        The countdown runs from the oldest hold the session still has; if that
        hold already ran out, the session's holds are released right away.
        Returns the remaining seconds (0 when nothing is held).
        """
        held = await self.engine.held_by(session)
        if not held:
            self.cancel(session)
            return 0

        oldest = min(seat.locked_at for seat in held)
        remaining = remaining_seconds(oldest, self.clock())
        if remaining > 0:
            self.arm(session, oldest)
            logger.info("countdown_recovered", seats=len(held), remaining=remaining)
            return remaining

        self.cancel(session)
        await self.engine.release_session_holds(session, self.clock())
        return 0

    # Scheduler

    async def tick(self, now: Optional[int] = None) -> list[str]:
        """Run one scheduler pass. Returns the seats released."""
        now = self.clock() if now is None else now
        released: list[str] = []

        due = [(session, deadline) for session, deadline in self._deadlines.items() if deadline <= now]
        for session, deadline in due:
            try:
                released.extend(await self.engine.release_session_holds(session, now))
            except ReservationError as e:
                logger.error("hold_cleanup_failed", session=session[:8], error=e.message)
            finally:
                # Keep a countdown re-armed while the release was in flight
                if self._deadlines.get(session) == deadline:
                    del self._deadlines[session]

        self.engine.prune_selections(now)

        try:
            released.extend(await self.engine.sweep_expired(now))
        except ReservationError as e:
            logger.error("expiry_sweep_failed", error=e.message)

        active_countdowns.set(len(self._deadlines))
        return released

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("watchdog_started", tick_seconds=self.tick_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._in_flight is not None and not self._in_flight.done():
            await self._in_flight
        self._in_flight = None
        logger.info("watchdog_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            self._in_flight = asyncio.create_task(self._safe_tick())
            await asyncio.shield(self._in_flight)

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("watchdog_tick_failed")
