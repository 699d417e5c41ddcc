"""
Reservation engine: the seat state machine with expiring holds.

STATE MACHINE
=============

  AVAILABLE --checkout--> CHECKOUT --registration--> PENDING --approve--> SOLD
      ^                      |                          |                  |
      +---- cancel/expiry ---+------- decline ----------+------ reset -----+

  Forced sale moves any seat not held by a user straight to SOLD.

A hold is the triple (status, locked_by, locked_at) stored inline on the seat.
It lasts LOCK_DURATION_SECONDS from locked_at; nothing deletes it when time
runs out, an expired CHECKOUT hold simply becomes claimable again and the
watchdog releases it on its next tick.

CONCURRENCY STRATEGY: snapshot check + atomic compare-and-set
=============================================================

Problem:
  Two sessions read the same snapshot, both see t3-s5 AVAILABLE, both write
  CHECKOUT. The second write silently overwrites the first hold.

Solution:
  1. Check every requested seat against the latest snapshot and reject the
     whole batch if any seat is taken (fast path, no write issued)
  2. Re-run the same check as a store precondition, inside the store's
     atomic unit, against the records as they are at commit time
  3. The loser of a race gets ConflictLost naming the seats it lost

  Step 2 can be switched off (guard_conflicts=False), which restores
  last-writer-wins; the experiments/checkout_race.py script shows the
  difference.

Release operations (cancel, expiry) are guarded the same way so a late
cleanup never clears a hold another session acquired in the meantime.

Every action is attempted once. Store failures propagate to the caller as
StorageUnavailable; nothing here retries.
"""

import time
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from seatlock.core.config import Settings, get_settings
from seatlock.core.errors import (
    ConflictLost, ExpiredLock, InvalidTransition, NotHolder, ReservationError,
    SeatNotFound, StorageUnavailable, ValidationFailed,
)
from seatlock.core.logging import get_logger
from seatlock.core.metrics import (
    record_admin_action, record_hold_attempt, record_registration, record_release,
)
from seatlock.schemas.seat import PaymentInfo, Seat, SeatStatus
from seatlock.services.interfaces.seat_store import SeatStore, Snapshot, StoredRecord, merge_fields
from seatlock.services.registration_service import (
    ParsedDetails, build_payment_info, check_receipt, normalize_ref_no, parse_details, payable_amount,
)
from seatlock.services.seating_service import PriceBook, SeatingLayout, SeatSeed

logger = get_logger(__name__)

LOCK_DURATION_SECONDS = 300
LOCK_DURATION_MS = LOCK_DURATION_SECONDS * 1000
RECORD_SCHEMA_VERSION = 2

_RELEASED_FIELDS = {
    "status": SeatStatus.AVAILABLE.value,
    "locked_by": None,
    "locked_at": None,
    "payment_info": None,
    "schema_version": RECORD_SCHEMA_VERSION,
}


def now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(locked_at: int, now: int) -> bool:
    return now - locked_at >= LOCK_DURATION_MS


def remaining_seconds(locked_at: int, now: int) -> int:
    elapsed = (now - locked_at) // 1000
    return max(0, min(LOCK_DURATION_SECONDS, LOCK_DURATION_SECONDS - elapsed))


def stored_status(record: Optional[StoredRecord]) -> SeatStatus:
    """Status of a stored record; missing records and unknown strings read as AVAILABLE."""
    if not record or "status" not in record:
        return SeatStatus.AVAILABLE
    try:
        return SeatStatus(str(record["status"]).upper())
    except ValueError:
        return SeatStatus.AVAILABLE


def holds(record: Optional[StoredRecord], session: str, status: SeatStatus = SeatStatus.CHECKOUT) -> bool:
    return stored_status(record) == status and record.get("locked_by") == session


class SelectionBook:
    """
    Per-session seat selections. Local to this process, never stored.

    Each session's selection remembers when it last changed so abandoned
    sessions can be pruned.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self.clock = clock
        self._selections: dict[str, list[str]] = {}
        self._touched: dict[str, int] = {}

    def get(self, session: str) -> list[str]:
        return list(self._selections.get(session, []))

    def add(self, session: str, seat_id: str) -> None:
        selection = self._selections.setdefault(session, [])
        if seat_id not in selection:
            selection.append(seat_id)
        self._touched[session] = self.clock()

    def remove(self, session: str, seat_ids: Iterable[str]) -> None:
        selection = self._selections.get(session)
        if selection is None:
            return
        drop = set(seat_ids)
        selection[:] = [seat_id for seat_id in selection if seat_id not in drop]
        if selection:
            self._touched[session] = self.clock()
        else:
            self.clear(session)

    def clear(self, session: str) -> None:
        self._selections.pop(session, None)
        self._touched.pop(session, None)

    def prune(self, idle_before: int) -> list[str]:
        """Drop selections last changed at or before `idle_before`. Returns the sessions dropped."""
        stale = [session for session, touched in self._touched.items() if touched <= idle_before]
        for session in stale:
            self.clear(session)
        return stale

    def __len__(self) -> int:
        return len(self._selections)


class ReservationEngine:
    def __init__(
        self,
        store: SeatStore,
        layout: SeatingLayout,
        prices: PriceBook,
        clock: Callable[[], int] = now_ms,
        guard_conflicts: bool = True,
        pending_expire: bool = False,
        max_receipt_bytes: int = 1_000_000,
        member_discount: Decimal = Decimal("1.00"),
    ):
        self.store = store
        self.layout = layout
        self.prices = prices
        self.clock = clock
        self.guard_conflicts = guard_conflicts
        self.pending_expire = pending_expire
        self.max_receipt_bytes = max_receipt_bytes
        self.member_discount = member_discount
        self.selections = SelectionBook(clock)

    @classmethod
    def from_settings(
        cls,
        store: SeatStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], int] = now_ms,
    ) -> "ReservationEngine":
        settings = settings or get_settings()
        return cls(
            store=store,
            layout=SeatingLayout.from_settings(settings),
            prices=PriceBook.from_settings(settings),
            clock=clock,
            guard_conflicts=settings.CHECKOUT_CONFLICT_GUARD,
            pending_expire=settings.PENDING_HOLDS_EXPIRE,
            max_receipt_bytes=settings.MAX_RECEIPT_BYTES,
            member_discount=settings.MEMBER_DISCOUNT,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def materialize(self, seed: SeatSeed, record: Optional[StoredRecord]) -> Seat:
        """Merge a layout seed with its stored fields (if any) into a full seat."""
        record = record or {}
        status = stored_status(record)
        if "status" in record and status.value != str(record["status"]).upper():
            logger.warning("unknown_seat_status", seat_id=seed.id, status=record["status"])

        price = record.get("price")
        price = Decimal(str(price)) if price is not None else self.prices.price_for(seed.tier)

        locked_by = locked_at = payment_info = None
        if status in (SeatStatus.CHECKOUT, SeatStatus.PENDING):
            locked_by = record.get("locked_by")
            locked_at = record.get("locked_at")
            if locked_by is None or locked_at is None:
                locked_by = locked_at = None
        if status in (SeatStatus.PENDING, SeatStatus.SOLD) and record.get("payment_info"):
            try:
                payment_info = PaymentInfo.model_validate(record["payment_info"])
            except ValidationError:
                logger.warning("malformed_payment_info", seat_id=seed.id)

        return Seat(
            id=seed.id,
            table_id=seed.table_id,
            seat_number=seed.seat_number,
            tier=seed.tier,
            price=price,
            status=status,
            locked_by=locked_by,
            locked_at=locked_at,
            payment_info=payment_info,
        )

    def chart(self, snapshot: Snapshot) -> list[Seat]:
        """Full chart in layout order from a store snapshot."""
        return [self.materialize(seed, snapshot.get(seed.id)) for seed in self.layout]

    async def seats(self) -> list[Seat]:
        return self.chart(await self.store.snapshot())

    async def seat(self, seat_id: str) -> Seat:
        seed = self._seed(seat_id)
        snapshot = await self.store.snapshot()
        return self.materialize(seed, snapshot.get(seat_id))

    async def held_by(self, session: str, status: SeatStatus = SeatStatus.CHECKOUT) -> list[Seat]:
        snapshot = await self.store.snapshot()
        return [seat for seat in self.chart(snapshot) if seat.status == status and seat.locked_by == session]

    def _seed(self, seat_id: str) -> SeatSeed:
        seed = self.layout.seed(seat_id)
        if seed is None:
            raise SeatNotFound([seat_id])
        return seed

    def _seed_fields(self, seat_id: str, record: Optional[StoredRecord]) -> dict[str, Any]:
        """Layout fields to write when a seat's record is first created."""
        if record and "price" in record:
            return {}
        seed = self._seed(seat_id)
        return {
            "table_id": seed.table_id,
            "seat_number": seed.seat_number,
            "tier": seed.tier.value,
            "price": self.prices.price_for(seed.tier),
        }

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_seat(self, session: str, seat_id: str) -> list[str]:
        """
        Toggle a seat in the session's selection.

        An AVAILABLE seat is added (or removed when already selected); a seat
        that is no longer available can only be removed.
        """
        self._seed(seat_id)
        selection = self.selections.get(session)
        snapshot = await self.store.snapshot()

        if seat_id in selection:
            self.selections.remove(session, [seat_id])
        elif self._claimable(snapshot.get(seat_id), session, self.clock()):
            self.selections.add(session, seat_id)
        else:
            raise ConflictLost([seat_id])
        return self.selections.get(session)

    def deselect_seat(self, session: str, seat_id: str) -> list[str]:
        self.selections.remove(session, [seat_id])
        return self.selections.get(session)

    def selection(self, session: str) -> list[str]:
        return self.selections.get(session)

    # ------------------------------------------------------------------
    # User transitions
    # ------------------------------------------------------------------

    def _claimable(self, record: Optional[StoredRecord], session: str, now: int) -> bool:
        status = stored_status(record)
        if status == SeatStatus.AVAILABLE:
            return True
        locked_at = record.get("locked_at")
        if status == SeatStatus.CHECKOUT:
            return record.get("locked_by") == session or locked_at is None or is_expired(locked_at, now)
        if status == SeatStatus.PENDING and self.pending_expire:
            return locked_at is None or is_expired(locked_at, now)
        return False

    async def checkout(self, session: str, seat_ids: Optional[Iterable[str]] = None) -> list[Seat]:
        """
        Hold seats for the session: AVAILABLE -> CHECKOUT as one batch.

        Seats the session already holds in CHECKOUT join the batch, so a
        session always has a single hold window.
        """
        requested = list(dict.fromkeys(seat_ids if seat_ids is not None else self.selections.get(session)))
        if not requested:
            raise ValidationFailed(
                "No seats selected",
                [{"field": "seat_ids", "message": "select at least one seat"}],
            )
        unknown = [seat_id for seat_id in requested if seat_id not in self.layout]
        if unknown:
            raise SeatNotFound(unknown)

        now = self.clock()
        snapshot = await self.store.snapshot()

        taken = [seat_id for seat_id in requested if not self._claimable(snapshot.get(seat_id), session, now)]
        if taken:
            record_hold_attempt("conflict")
            logger.warning("checkout_conflict", seat_ids=taken, stage="snapshot")
            raise ConflictLost(taken)

        already_held = [
            seat_id for seat_id, record in snapshot.items()
            if seat_id in self.layout and seat_id not in requested and holds(record, session)
        ]
        batch = requested + already_held

        entries = []
        for seat_id in batch:
            fields = {
                "status": SeatStatus.CHECKOUT.value,
                "locked_by": session,
                "locked_at": now,
                "payment_info": None,
                "schema_version": RECORD_SCHEMA_VERSION,
            }
            fields.update(self._seed_fields(seat_id, snapshot.get(seat_id)))
            entries.append((seat_id, fields))

        precondition = None
        if self.guard_conflicts:
            def precondition(current: dict[str, Optional[StoredRecord]]) -> None:
                lost = [seat_id for seat_id, record in current.items() if not self._claimable(record, session, now)]
                if lost:
                    raise ConflictLost(lost)

        try:
            await self.store.batch_upsert(entries, precondition=precondition)
        except ConflictLost as e:
            record_hold_attempt("conflict")
            logger.warning("checkout_conflict", seat_ids=e.seat_ids, stage="commit")
            raise
        except StorageUnavailable:
            record_hold_attempt("error")
            raise

        self.selections.remove(session, batch)
        record_hold_attempt("success", len(requested))
        logger.info("seats_checked_out", seat_ids=batch, locked_at=now)

        return [
            self.materialize(self._seed(seat_id), merge_fields(snapshot.get(seat_id), fields))
            for seat_id, fields in entries
        ]

    async def cancel_checkout(self, session: str, seat_ids: Optional[Iterable[str]] = None) -> list[str]:
        """CHECKOUT -> AVAILABLE for the session's own holds. Seats it does not hold are skipped."""
        snapshot = await self.store.snapshot()
        held = [seat_id for seat_id, record in snapshot.items() if holds(record, session)]
        if seat_ids is not None:
            wanted = set(seat_ids)
            held = [seat_id for seat_id in held if seat_id in wanted]

        released = await self._release(
            held,
            lambda seat_id, record: holds(record, session),
            reason="cancel",
        )
        self.selections.remove(session, released)
        return released

    async def submit_registration(
        self,
        session: str,
        raw_details: Mapping[str, Mapping[str, Any]],
        ref_no: Optional[str],
        receipt: Optional[str],
    ) -> tuple[list[Seat], Decimal]:
        """CHECKOUT -> PENDING for every seat the session holds. Returns the seats and the payable total."""
        try:
            seats, total = await self._submit_registration(session, raw_details, ref_no, receipt)
        except ValidationFailed:
            record_registration("invalid")
            raise
        except ExpiredLock:
            record_registration("expired")
            raise
        except StorageUnavailable:
            record_registration("error")
            raise
        except ReservationError:
            record_registration("rejected")
            raise
        record_registration("success")
        return seats, total

    async def _submit_registration(
        self,
        session: str,
        raw_details: Mapping[str, Mapping[str, Any]],
        ref_no: Optional[str],
        receipt: Optional[str],
    ) -> tuple[list[Seat], Decimal]:
        ref_no = normalize_ref_no(ref_no)
        receipt = check_receipt(receipt, self.max_receipt_bytes)
        details = parse_details(raw_details)
        if not details:
            raise ValidationFailed(
                "Attendee details are required",
                [{"field": "details", "message": "no seats given"}],
            )

        unknown = [seat_id for seat_id in details if seat_id not in self.layout]
        if unknown:
            raise SeatNotFound(unknown)

        now = self.clock()
        snapshot = await self.store.snapshot()
        self._check_holds(session, details, snapshot, now)

        missing = [
            seat_id for seat_id, record in snapshot.items()
            if seat_id in self.layout and seat_id not in details and holds(record, session)
        ]
        if missing:
            raise ValidationFailed(
                "Attendee details missing for held seats",
                [{"seat_id": seat_id, "field": "details", "message": "details are required"} for seat_id in sorted(missing)],
            )

        entries = [
            (seat_id, {
                "status": SeatStatus.PENDING.value,
                "locked_by": session,
                "locked_at": now,
                "payment_info": build_payment_info(attendee, ref_no, receipt, now),
                "schema_version": RECORD_SCHEMA_VERSION,
            })
            for seat_id, attendee in details.items()
        ]

        def still_held(current: dict[str, Optional[StoredRecord]]) -> None:
            self._check_holds(session, details, current, now)

        await self.store.batch_upsert(entries, precondition=still_held)

        seats = [
            self.materialize(self._seed(seat_id), merge_fields(snapshot.get(seat_id), fields))
            for seat_id, fields in entries
        ]
        total = self.payable_total(seats, details)
        logger.info(
            "registration_submitted",
            seat_ids=list(details),
            ref_no=ref_no,
            total=str(total),
        )
        return seats, total

    def _check_holds(
        self,
        session: str,
        details: Mapping[str, ParsedDetails],
        records: Mapping[str, Optional[StoredRecord]],
        now: int,
    ) -> None:
        not_held, expired = [], []
        for seat_id in details:
            record = records.get(seat_id)
            if not holds(record, session):
                not_held.append(seat_id)
            elif is_expired(record["locked_at"], now):
                expired.append(seat_id)
        if not_held:
            raise NotHolder(not_held)
        if expired:
            raise ExpiredLock(expired)

    def payable_total(self, seats: Iterable[Seat], details: Mapping[str, ParsedDetails]) -> Decimal:
        return sum(
            (payable_amount(seat.price, details.get(seat.id), self.member_discount) for seat in seats),
            Decimal("0"),
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def _release(
        self,
        seat_ids: list[str],
        still_owned: Callable[[str, Optional[StoredRecord]], bool],
        reason: str,
    ) -> list[str]:
        """
        Clear the holds on `seat_ids` as one batch, but only where
        `still_owned` holds at commit time. On a miss, re-read once and
        release whatever is still owned.
        """
        if not seat_ids:
            return []

        def precondition(current: dict[str, Optional[StoredRecord]]) -> None:
            lost = [seat_id for seat_id, record in current.items() if not still_owned(seat_id, record)]
            if lost:
                raise ConflictLost(lost)

        try:
            await self.store.batch_upsert([(seat_id, _RELEASED_FIELDS) for seat_id in seat_ids], precondition=precondition)
        except ConflictLost as e:
            logger.info("release_reconcile", reason=reason, lost=e.seat_ids)
            snapshot = await self.store.snapshot()
            seat_ids = [seat_id for seat_id in seat_ids if still_owned(seat_id, snapshot.get(seat_id))]
            if not seat_ids:
                return []
            await self.store.batch_upsert([(seat_id, _RELEASED_FIELDS) for seat_id in seat_ids], precondition=precondition)

        record_release(reason, len(seat_ids))
        logger.info("holds_released", reason=reason, seat_ids=seat_ids)
        return seat_ids

    async def release_session_holds(self, session: str, now: Optional[int] = None) -> list[str]:
        """
        Release the session's CHECKOUT holds that ran out (countdown reached
        zero). A seat re-held since the snapshot keeps its new hold.
        """
        now = self.clock() if now is None else now
        snapshot = await self.store.snapshot()
        seen: dict[str, int] = {
            seat_id: record["locked_at"]
            for seat_id, record in snapshot.items()
            if holds(record, session)
            and record.get("locked_at") is not None
            and is_expired(record["locked_at"], now)
        }

        def unchanged(seat_id: str, record: Optional[StoredRecord]) -> bool:
            return holds(record, session) and record.get("locked_at") == seen[seat_id]

        released = await self._release(list(seen), unchanged, reason="expired")
        if released:
            logger.info("hold_expired", seat_ids=released)
        return released

    async def sweep_expired(self, now: Optional[int] = None) -> list[str]:
        """Release holds whose time ran out, whoever holds them."""
        now = self.clock() if now is None else now
        snapshot = await self.store.snapshot()

        expected: dict[str, tuple[str, int]] = {}
        stale_pending: dict[str, int] = {}
        for seat_id, record in snapshot.items():
            status = stored_status(record)
            locked_at = record.get("locked_at")
            if locked_at is None or not is_expired(locked_at, now):
                continue
            if status == SeatStatus.CHECKOUT:
                expected[seat_id] = (record.get("locked_by"), locked_at)
            elif status == SeatStatus.PENDING and self.pending_expire:
                stale_pending[seat_id] = locked_at

        def unchanged(seat_id: str, record: Optional[StoredRecord]) -> bool:
            return (
                stored_status(record) == SeatStatus.CHECKOUT
                and (record.get("locked_by"), record.get("locked_at")) == expected[seat_id]
            )

        released = await self._release(list(expected), unchanged, reason="expired")

        timed_out = []
        for seat_id, locked_at in stale_pending.items():
            try:
                await self.store.delete_one(seat_id, precondition=self._still_pending(seat_id, locked_at))
            except ConflictLost:
                logger.info("pending_timeout_skipped", seat_id=seat_id)
                continue
            timed_out.append(seat_id)
        if timed_out:
            record_release("pending_timeout", len(timed_out))
            logger.info("pending_hold_expired", seat_ids=timed_out)

        return released + timed_out

    @staticmethod
    def _still_pending(seat_id: str, locked_at: int):
        def precondition(current: dict[str, Optional[StoredRecord]]) -> None:
            record = current.get(seat_id)
            if stored_status(record) != SeatStatus.PENDING or record.get("locked_at") != locked_at:
                raise ConflictLost([seat_id])
        return precondition

    def prune_selections(self, now: Optional[int] = None) -> list[str]:
        """Forget selections that have not changed for a full hold duration."""
        now = self.clock() if now is None else now
        dropped = self.selections.prune(now - LOCK_DURATION_MS)
        if dropped:
            logger.info("selections_pruned", sessions=len(dropped))
        return dropped

    # ------------------------------------------------------------------
    # Admin transitions (no holder check)
    # ------------------------------------------------------------------

    async def approve(self, seat_id: str) -> Seat:
        """PENDING -> SOLD, keeping the payment info."""
        seed = self._seed(seat_id)
        snapshot = await self.store.snapshot()

        def is_pending(current: dict[str, Optional[StoredRecord]]) -> None:
            record = current.get(seat_id)
            status = stored_status(record)
            if status != SeatStatus.PENDING or not record.get("payment_info"):
                raise InvalidTransition(seat_id, status.value, "approve")

        is_pending(snapshot)
        fields = {
            "status": SeatStatus.SOLD.value,
            "locked_by": None,
            "locked_at": None,
            "schema_version": RECORD_SCHEMA_VERSION,
        }
        await self.store.upsert_one(seat_id, fields, precondition=is_pending)

        record_admin_action("approve")
        logger.info("seat_approved", seat_id=seat_id)
        return self.materialize(seed, merge_fields(snapshot.get(seat_id), fields))

    async def decline(self, seat_id: str) -> Seat:
        """CHECKOUT or PENDING -> AVAILABLE by deleting the record."""
        seed = self._seed(seat_id)
        snapshot = await self.store.snapshot()

        def is_held(current: dict[str, Optional[StoredRecord]]) -> None:
            status = stored_status(current.get(seat_id))
            if status not in (SeatStatus.CHECKOUT, SeatStatus.PENDING):
                raise InvalidTransition(seat_id, status.value, "decline")

        is_held(snapshot)
        status = stored_status(snapshot.get(seat_id))
        await self.store.delete_one(seat_id, precondition=is_held)

        record_admin_action("decline")
        record_release("declined", 1)
        logger.info("seat_declined", seat_id=seat_id, previous_status=status.value)
        return self.materialize(seed, None)

    async def reset(self, seat_id: str) -> Seat:
        """Any state -> AVAILABLE. The record is deleted and re-seeds at the current tier price."""
        seed = self._seed(seat_id)
        await self.store.delete_one(seat_id)

        record_admin_action("reset")
        logger.info("seat_reset", seat_id=seat_id)
        return self.materialize(seed, None)

    async def force_sale(
        self,
        seat_id: str,
        details: ParsedDetails,
        ref_no: str,
        receipt: Optional[str] = None,
    ) -> Seat:
        """Mark a seat SOLD directly. Seats currently held by a user are refused."""
        seed = self._seed(seat_id)
        ref_no = normalize_ref_no(ref_no)
        if receipt:
            check_receipt(receipt, self.max_receipt_bytes)

        now = self.clock()
        snapshot = await self.store.snapshot()

        def not_held(current: dict[str, Optional[StoredRecord]]) -> None:
            record = current.get(seat_id)
            status = stored_status(record)
            if status != SeatStatus.SOLD and not self._claimable(record, session="", now=now):
                raise InvalidTransition(seat_id, status.value, "force sale")

        not_held(snapshot)
        fields = {
            "status": SeatStatus.SOLD.value,
            "locked_by": None,
            "locked_at": None,
            "payment_info": build_payment_info(details, ref_no, receipt, now),
            "schema_version": RECORD_SCHEMA_VERSION,
        }
        fields.update(self._seed_fields(seat_id, snapshot.get(seat_id)))
        await self.store.upsert_one(seat_id, fields, precondition=not_held)

        record_admin_action("force_sale")
        logger.info("seat_force_sold", seat_id=seat_id, ref_no=ref_no)
        return self.materialize(seed, merge_fields(snapshot.get(seat_id), fields))
