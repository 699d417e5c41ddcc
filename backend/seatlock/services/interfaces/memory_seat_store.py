"""
In-process seat store.
Single worker only: the map lives in this process's memory.
"""

import asyncio
import copy
from typing import Iterable, Optional

from seatlock.services.interfaces.seat_store import (
    Entry, Precondition, SeatStore, Snapshot, StoredRecord, check_fields, merge_fields,
)


class InMemorySeatStore(SeatStore):
    """
    Dict-backed store.

    Use when:
    - Tests and local development
    - A single worker process serves every client

    `write_delay` simulates the network hop between a client issuing a write
    and the write landing, which is what lets two clients race.
    """

    def __init__(self, write_delay: float = 0.0):
        super().__init__()
        self._records: dict[str, StoredRecord] = {}
        self._lock = asyncio.Lock()
        self.write_delay = write_delay

    async def snapshot(self) -> Snapshot:
        return copy.deepcopy(self._records)

    async def batch_upsert(
        self,
        entries: Iterable[Entry],
        precondition: Optional[Precondition] = None,
    ) -> None:
        entries = list(entries)
        for _, fields in entries:
            check_fields(fields)

        if self.write_delay:
            await asyncio.sleep(self.write_delay)

        async with self._lock:
            if precondition is not None:
                precondition({
                    seat_id: copy.deepcopy(self._records.get(seat_id))
                    for seat_id, _ in entries
                })

            # Stage everything first so a bad entry leaves the map untouched
            staged: dict[str, StoredRecord] = {}
            for seat_id, fields in entries:
                staged[seat_id] = merge_fields(staged.get(seat_id, self._records.get(seat_id)), fields)
            self._records.update(staged)
            committed = copy.deepcopy(self._records)

        await self._changed(committed)

    async def delete_one(self, seat_id: str, precondition: Optional[Precondition] = None) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)

        async with self._lock:
            if precondition is not None:
                precondition({seat_id: copy.deepcopy(self._records.get(seat_id))})
            existed = self._records.pop(seat_id, None) is not None
            committed = copy.deepcopy(self._records)

        if existed:
            await self._changed(committed)
