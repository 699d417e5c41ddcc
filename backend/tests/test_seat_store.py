"""
Tests for the seat store contract, run against both backends.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from seatlock.core.config import Settings
from seatlock.core.errors import ConflictLost, StorageUnavailable
from seatlock.db.session import create_engine
from seatlock.services.interfaces.memory_seat_store import InMemorySeatStore
from seatlock.services.sql_seat_store import SqlSeatStore
from seatlock.services.store_factory import create_seat_store


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_store(request):
    if request.param == "memory":
        yield InMemorySeatStore()
        return

    pytest.importorskip("aiosqlite")
    sql_store = SqlSeatStore(create_engine("sqlite+aiosqlite:///:memory:"))
    await sql_store.connect()
    yield sql_store
    await sql_store.close()


class Recorder:
    def __init__(self):
        self.snapshots = []

    async def __call__(self, snapshot):
        self.snapshots.append(snapshot)


@pytest.mark.asyncio
async def test_upsert_merges_partial_fields(any_store):
    """Absent keys are untouched, None clears a key."""
    await any_store.upsert_one("t1-s1", {"status": "CHECKOUT", "locked_by": "abc12345", "locked_at": 1000})
    await any_store.upsert_one("t1-s1", {"price": Decimal("10.88")})

    record = (await any_store.snapshot())["t1-s1"]
    assert record["status"] == "CHECKOUT"
    assert record["locked_by"] == "abc12345"
    assert record["price"] == Decimal("10.88")

    await any_store.upsert_one("t1-s1", {"status": "AVAILABLE", "locked_by": None, "locked_at": None})
    record = (await any_store.snapshot())["t1-s1"]
    assert record["status"] == "AVAILABLE"
    assert "locked_by" not in record
    assert "locked_at" not in record
    assert record["price"] == Decimal("10.88")


@pytest.mark.asyncio
async def test_batch_is_all_or_nothing(any_store):
    """A failing precondition aborts the whole batch."""
    await any_store.upsert_one("t1-s2", {"status": "SOLD"})

    def refuse_sold(current):
        taken = [seat_id for seat_id, record in current.items() if record and record.get("status") == "SOLD"]
        if taken:
            raise ConflictLost(taken)

    with pytest.raises(ConflictLost) as exc:
        await any_store.batch_upsert(
            [("t1-s1", {"status": "CHECKOUT"}), ("t1-s2", {"status": "CHECKOUT"})],
            precondition=refuse_sold,
        )
    assert exc.value.seat_ids == ["t1-s2"]

    snapshot = await any_store.snapshot()
    assert "t1-s1" not in snapshot
    assert snapshot["t1-s2"]["status"] == "SOLD"


@pytest.mark.asyncio
async def test_precondition_sees_missing_records_as_none(any_store):
    seen = {}

    def capture(current):
        seen.update(current)

    await any_store.batch_upsert([("t3-s3", {"status": "CHECKOUT"})], precondition=capture)
    assert seen == {"t3-s3": None}


@pytest.mark.asyncio
async def test_delete_is_idempotent(any_store):
    await any_store.upsert_one("t2-s1", {"status": "PENDING"})
    await any_store.delete_one("t2-s1")
    await any_store.delete_one("t2-s1")
    await any_store.delete_one("t9-s9")
    assert "t2-s1" not in await any_store.snapshot()


@pytest.mark.asyncio
async def test_delete_precondition_can_refuse(any_store):
    await any_store.upsert_one("t2-s1", {"status": "SOLD"})
    seen = {}

    def only_pending(current):
        seen.update(current)
        if current["t2-s1"]["status"] != "PENDING":
            raise ConflictLost(["t2-s1"])

    with pytest.raises(ConflictLost):
        await any_store.delete_one("t2-s1", precondition=only_pending)
    assert seen == {"t2-s1": {"status": "SOLD"}}
    assert (await any_store.snapshot())["t2-s1"]["status"] == "SOLD"

    await any_store.upsert_one("t2-s1", {"status": "PENDING"})
    await any_store.delete_one("t2-s1", precondition=only_pending)
    assert "t2-s1" not in await any_store.snapshot()


@pytest.mark.asyncio
async def test_unknown_field_rejected(any_store):
    with pytest.raises(ValueError):
        await any_store.upsert_one("t1-s1", {"colour": "red"})


@pytest.mark.asyncio
async def test_subscribe_delivers_initial_snapshot_then_changes(any_store):
    await any_store.upsert_one("t1-s1", {"status": "SOLD"})
    recorder = Recorder()

    unsubscribe = await any_store.subscribe(recorder)
    assert recorder.snapshots == [{"t1-s1": {"status": "SOLD"}}]

    await any_store.batch_upsert([("t1-s2", {"status": "CHECKOUT"}), ("t1-s3", {"status": "CHECKOUT"})])
    assert len(recorder.snapshots) == 2
    assert set(recorder.snapshots[-1]) == {"t1-s1", "t1-s2", "t1-s3"}

    unsubscribe()
    await any_store.delete_one("t1-s1")
    assert len(recorder.snapshots) == 2


@pytest.mark.asyncio
async def test_pushed_snapshots_leave_out_receipts(any_store):
    info = {"ref_no": "REF-1", "name": "Alice Tan", "receipt": "data:image/png;base64,AAAA"}
    await any_store.upsert_one("t1-s1", {"status": "PENDING", "payment_info": info})
    recorder = Recorder()
    await any_store.subscribe(recorder)
    await any_store.upsert_one("t1-s2", {"status": "CHECKOUT"})

    for pushed in recorder.snapshots:
        assert pushed["t1-s1"]["payment_info"] == {"ref_no": "REF-1", "name": "Alice Tan"}
    assert (await any_store.snapshot())["t1-s1"]["payment_info"]["receipt"] == info["receipt"]


@pytest.mark.asyncio
async def test_failing_listener_is_isolated(any_store):
    """One broken listener never breaks writers or other listeners."""

    async def broken(snapshot):
        raise RuntimeError("listener bug")

    recorder = Recorder()
    await any_store.subscribe(broken)
    await any_store.subscribe(recorder)

    await any_store.upsert_one("t4-s4", {"status": "CHECKOUT"})
    assert recorder.snapshots[-1]["t4-s4"]["status"] == "CHECKOUT"


@pytest.mark.asyncio
async def test_commit_hook_runs_after_each_write(any_store):
    calls = []

    async def hook():
        calls.append(len(await any_store.snapshot()))

    any_store.add_commit_hook(hook)
    await any_store.upsert_one("t1-s1", {"status": "CHECKOUT"})
    await any_store.delete_one("t1-s1")
    assert calls == [1, 0]


@pytest.mark.asyncio
async def test_refresh_pushes_to_listeners(any_store):
    recorder = Recorder()
    await any_store.subscribe(recorder)
    await any_store.refresh()
    assert len(recorder.snapshots) == 2


@pytest.mark.asyncio
async def test_listener_gets_a_copy(any_store):
    """Listeners cannot corrupt the store by mutating what they receive."""

    async def vandal(snapshot):
        snapshot.clear()

    await any_store.upsert_one("t1-s1", {"status": "SOLD"})
    await any_store.subscribe(vandal)
    await any_store.upsert_one("t1-s2", {"status": "SOLD"})
    assert set(await any_store.snapshot()) == {"t1-s1", "t1-s2"}


@pytest.mark.asyncio
async def test_json_payment_info_round_trips(any_store):
    info = {"category": "STUDENT", "name": "Alice Tan", "ref_no": "REF1", "is_member": True}
    await any_store.upsert_one("t5-s1", {"status": "PENDING", "payment_info": info})
    assert (await any_store.snapshot())["t5-s1"]["payment_info"] == info


@pytest.mark.asyncio
async def test_sql_store_unreachable_raises_storage_unavailable():
    pytest.importorskip("aiosqlite")
    broken = SqlSeatStore(create_engine("sqlite+aiosqlite:////nonexistent-dir/seats.db"))

    with pytest.raises(StorageUnavailable):
        await broken.snapshot()
    with pytest.raises(StorageUnavailable):
        await broken.upsert_one("t1-s1", {"status": "CHECKOUT"})
    await broken.close()


def test_store_factory_backends():
    assert isinstance(create_seat_store(Settings(SEAT_STORE_BACKEND="memory")), InMemorySeatStore)

    sql_store = create_seat_store(Settings(SEAT_STORE_BACKEND="SQL", DATABASE_URL="sqlite+aiosqlite:///:memory:"))
    assert isinstance(sql_store, SqlSeatStore)

    with pytest.raises(ValueError):
        create_seat_store(Settings(SEAT_STORE_BACKEND="redis"))
