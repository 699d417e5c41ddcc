"""
SQL-backed seat store.
Implements the SeatStore interface on top of SQLAlchemy async sessions.

Atomicity:
  One batch is one transaction. The batch's rows are read with
  SELECT ... FOR UPDATE before the precondition runs, so on PostgreSQL two
  workers writing the same seats serialize on row locks. Rows that do not
  exist yet cannot be locked; two inserts of the same id collide on the
  primary key instead and the loser surfaces as StorageUnavailable.

  Writes from this process are additionally funnelled through one asyncio
  lock. SQLite (tests, local runs) ignores FOR UPDATE and shares a single
  connection, so the lock is what keeps its transactions from interleaving.

Failure handling:
  Any driver or connection error is reported as StorageUnavailable after the
  transaction has rolled back. Nothing is retried here; callers decide.
"""

import asyncio
import time
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from seatlock.core.errors import StorageUnavailable
from seatlock.core.logging import get_logger
from seatlock.core.metrics import record_store_operation, store_latency
from seatlock.db.base import Base
from seatlock.db.session import create_session_factory
from seatlock.models.seat import SeatRecord
from seatlock.services.interfaces.seat_store import (
    Entry, Precondition, SeatStore, Snapshot, check_fields,
)

logger = get_logger(__name__)


class SqlSeatStore(SeatStore):
    """
    Seat store persisted in the `seats` table.

    Use when:
    - More than one worker process serves clients
    - Holds must survive a restart
    """

    def __init__(self, engine: AsyncEngine):
        super().__init__()
        self.engine = engine
        self._sessions = create_session_factory(engine)
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Create the seats table if migrations have not."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            logger.error("seat_store_connect_failed", error=str(e))
            raise StorageUnavailable() from e
        logger.info("seat_store_connected", backend="sql")

    async def close(self) -> None:
        await self.engine.dispose()

    async def snapshot(self) -> Snapshot:
        try:
            async with self._sessions() as session:
                result = await session.execute(select(SeatRecord))
                records = {row.id: row.to_fields() for row in result.scalars()}
        except (SQLAlchemyError, OSError) as e:
            record_store_operation("snapshot", ok=False)
            logger.error("seat_store_read_failed", error=str(e))
            raise StorageUnavailable() from e
        record_store_operation("snapshot", ok=True)
        return records

    async def batch_upsert(
        self,
        entries: Iterable[Entry],
        precondition: Optional[Precondition] = None,
    ) -> None:
        entries = list(entries)
        for _, fields in entries:
            check_fields(fields)
        seat_ids = [seat_id for seat_id, _ in entries]

        start = time.perf_counter()
        async with self._write_lock:
            try:
                async with self._sessions() as session:
                    async with session.begin():
                        result = await session.execute(
                            select(SeatRecord)
                            .where(SeatRecord.id.in_(seat_ids))
                            .with_for_update()
                        )
                        rows = {row.id: row for row in result.scalars()}

                        if precondition is not None:
                            precondition({
                                seat_id: rows[seat_id].to_fields() if seat_id in rows else None
                                for seat_id in seat_ids
                            })

                        for seat_id, fields in entries:
                            row = rows.get(seat_id)
                            if row is None:
                                row = SeatRecord(id=seat_id)
                                session.add(row)
                                rows[seat_id] = row
                            for name, value in fields.items():
                                setattr(row, name, value)
            except (SQLAlchemyError, OSError) as e:
                record_store_operation("batch_upsert", ok=False)
                logger.error("seat_store_write_failed", seat_ids=seat_ids, error=str(e))
                raise StorageUnavailable() from e

        store_latency.observe(time.perf_counter() - start)
        record_store_operation("batch_upsert", ok=True)
        await self._changed()

    async def delete_one(self, seat_id: str, precondition: Optional[Precondition] = None) -> None:
        async with self._write_lock:
            try:
                async with self._sessions() as session:
                    async with session.begin():
                        if precondition is not None:
                            current = await session.execute(
                                select(SeatRecord)
                                .where(SeatRecord.id == seat_id)
                                .with_for_update()
                            )
                            row = current.scalar_one_or_none()
                            precondition({seat_id: row.to_fields() if row is not None else None})
                        result = await session.execute(
                            delete(SeatRecord).where(SeatRecord.id == seat_id)
                        )
            except (SQLAlchemyError, OSError) as e:
                record_store_operation("delete", ok=False)
                logger.error("seat_store_delete_failed", seat_id=seat_id, error=str(e))
                raise StorageUnavailable() from e

        record_store_operation("delete", ok=True)
        if result.rowcount:
            await self._changed()
