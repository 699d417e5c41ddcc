"""
Seat store interface.

A durable, shared, multi-writer map of seat id -> stored fields with change
notification. Implementations only differ in where the map lives; merge
semantics, atomicity and subscription behaviour are defined here.

Merge semantics:
  - keys absent from a partial update are left untouched
  - keys set to None are cleared
  - all entries of one batch become visible together, or (on failure) none do

The store itself does not arbitrate between writers. A caller that needs a
compare-and-set passes a precondition; it runs inside the atomic unit against
the current records of the batch keys and aborts the batch by raising.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from seatlock.core.errors import StorageUnavailable
from seatlock.core.logging import get_logger
from seatlock.core.metrics import store_subscribers

logger = get_logger(__name__)

SEAT_FIELDS = frozenset({
    "table_id",
    "seat_number",
    "tier",
    "price",
    "status",
    "locked_by",
    "locked_at",
    "payment_info",
    "schema_version",
})

StoredRecord = dict[str, Any]
Snapshot = dict[str, StoredRecord]
Entry = tuple[str, Mapping[str, Any]]
Listener = Callable[[Snapshot], Awaitable[None]]
Precondition = Callable[[dict[str, Optional[StoredRecord]]], None]
CommitHook = Callable[[], Awaitable[None]]


def check_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - SEAT_FIELDS
    if unknown:
        raise ValueError(f"Unknown seat field(s): {', '.join(sorted(unknown))}")


def merge_fields(current: Optional[StoredRecord], partial: Mapping[str, Any]) -> StoredRecord:
    merged = dict(current or {})
    for key, value in partial.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = copy.deepcopy(value)
    return merged



def without_receipts(snapshot: Snapshot) -> Snapshot:
    """Shallow copy of `snapshot` with `payment_info.receipt` dropped."""
    trimmed: Snapshot = {}
    for seat_id, record in snapshot.items():
        info = record.get("payment_info")
        if isinstance(info, dict) and "receipt" in info:
            record = {**record, "payment_info": {k: v for k, v in info.items() if k != "receipt"}}
        trimmed[seat_id] = record
    return trimmed


class SeatStore(ABC):
    """
    Base class for seat stores.

    Subclasses implement snapshot/batch_upsert/delete_one and call
    `_changed()` after every committed write; listener bookkeeping and
    delivery live here.
    """

    def __init__(self):
        self._listeners: dict[int, Listener] = {}
        self._next_listener_id = 0
        self._commit_hooks: list[CommitHook] = []

    async def connect(self) -> None:
        """Prepare the backend (create tables, open pools)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def snapshot(self) -> Snapshot:
        """Full current map of seat id -> stored fields."""

    @abstractmethod
    async def batch_upsert(
        self,
        entries: Iterable[Entry],
        precondition: Optional[Precondition] = None,
    ) -> None:
        """
        Merge each entry's partial fields into its record as one unit of work.

        Raises:
            StorageUnavailable: backend unreachable, nothing applied
            ReservationError: raised by the precondition, nothing applied
        """

    @abstractmethod
    async def delete_one(self, seat_id: str, precondition: Optional[Precondition] = None) -> None:
        """
        Remove a record. Deleting a missing record succeeds.

        The precondition sees `{seat_id: current record or None}` and aborts
        the delete by raising.
        """

    async def upsert_one(
        self,
        seat_id: str,
        fields: Mapping[str, Any],
        precondition: Optional[Precondition] = None,
    ) -> None:
        await self.batch_upsert([(seat_id, fields)], precondition=precondition)

    async def subscribe(self, on_change: Listener) -> Callable[[], None]:
        """
        Register a listener for full snapshots.

        The current snapshot is delivered before this returns; afterwards the
        listener receives a snapshot after every committed change until the
        returned unsubscribe callable is invoked.

        Pushed snapshots leave out payment receipts; read those with
        `snapshot()`.
        """
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = on_change
        store_subscribers.set(len(self._listeners))

        def unsubscribe() -> None:
            if self._listeners.pop(listener_id, None) is not None:
                store_subscribers.set(len(self._listeners))

        try:
            initial = await self.snapshot()
        except StorageUnavailable:
            unsubscribe()
            raise
        await self._deliver(listener_id, on_change, without_receipts(initial))
        return unsubscribe

    def add_commit_hook(self, hook: CommitHook) -> None:
        """Run `hook` after every committed write (cross-process relays)."""
        self._commit_hooks.append(hook)

    async def refresh(self) -> None:
        """Re-read the backend and push the result to local listeners."""
        if self._listeners:
            await self._notify(await self.snapshot())

    async def _changed(self, snapshot: Optional[Snapshot] = None) -> None:
        # The write is already committed: failures here must not reach the writer
        if self._listeners:
            try:
                if snapshot is None:
                    snapshot = await self.snapshot()
                await self._notify(snapshot)
            except StorageUnavailable:
                logger.warning("snapshot_after_write_failed", listeners=len(self._listeners))

        for hook in list(self._commit_hooks):
            try:
                await hook()
            except Exception as e:
                logger.warning("commit_hook_failed", error=str(e))

    async def _notify(self, snapshot: Snapshot) -> None:
        pushed = without_receipts(snapshot)
        for listener_id, listener in list(self._listeners.items()):
            await self._deliver(listener_id, listener, copy.deepcopy(pushed))

    async def _deliver(self, listener_id: int, listener: Listener, snapshot: Snapshot) -> None:
        try:
            await listener(snapshot)
        except Exception as e:
            logger.error("seat_listener_failed", listener_id=listener_id, error=str(e))
