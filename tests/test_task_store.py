"""Tests for the durable task store."""

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest
from conftest import FakeClock

from conduit.core.errors import StorageError
from conduit.storage.database import Database
from conduit.tasks.store import TaskStore
from conduit.tasks.types import TaskStatus


@pytest.mark.asyncio
async def test_enqueue_defaults(store: TaskStore, clock: FakeClock):
    """Enqueued tasks start pending with zero attempts, due now."""
    task_id = await store.enqueue("summarize", {"doc": 7})

    task = await store.get(task_id)
    assert task is not None
    assert task.status == TaskStatus.PENDING
    assert task.attempts == 0
    assert task.max_attempts == 3
    assert task.payload == {"doc": 7}
    assert task.created_at == clock()
    assert task.scheduled_at == clock()
    assert task.owner is None


@pytest.mark.asyncio
async def test_enqueue_validation(store: TaskStore):
    with pytest.raises(ValueError):
        await store.enqueue("t", {}, max_attempts=0)
    with pytest.raises(ValueError):
        await store.enqueue("", {})
    with pytest.raises(ValueError):
        await store.enqueue("t", {"when": object()})


@pytest.mark.asyncio
async def test_enqueue_unique(store: TaskStore):
    """unique=True reuses an active task with the same type and payload."""
    first = await store.enqueue("sync", {"a": 1, "b": 2}, unique=True)
    again = await store.enqueue("sync", {"b": 2, "a": 1}, unique=True)
    other = await store.enqueue("sync", {"a": 2}, unique=True)

    assert again == first
    assert other != first
    assert len(await store.list_tasks()) == 2


@pytest.mark.asyncio
async def test_enqueue_unique_after_completion(store: TaskStore):
    """Terminal tasks do not block a new unique enqueue."""
    first = await store.enqueue("sync", {"a": 1}, unique=True)
    await store.claim(1, "w")
    await store.complete(first)

    second = await store.enqueue("sync", {"a": 1}, unique=True)
    assert second != first


@pytest.mark.asyncio
async def test_claim_order_and_batch(store: TaskStore, clock: FakeClock):
    """Claims by priority then scheduled_at, up to batch size."""
    low = await store.enqueue("t", {"n": 1}, priority=10)
    clock.advance(1)
    urgent_late = await store.enqueue("t", {"n": 2}, priority=1)
    clock.advance(1)
    urgent_later = await store.enqueue("t", {"n": 3}, priority=1)

    claimed = await store.claim(2, "worker-a")

    assert [t.id for t in claimed] == [urgent_late, urgent_later]
    assert all(t.status == TaskStatus.PROCESSING for t in claimed)
    assert all(t.owner == "worker-a" for t in claimed)
    assert claimed[0].processing_started_at == clock()
    assert (await store.get(low)).status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_claim_skips_future_tasks(store: TaskStore, clock: FakeClock):
    """Tasks scheduled in the future are not claimed until due."""
    task_id = await store.enqueue("t", {}, scheduled_at=clock() + timedelta(minutes=10))

    assert await store.claim(10, "w") == []
    clock.advance(600)
    assert [t.id for t in await store.claim(10, "w")] == [task_id]


@pytest.mark.asyncio
async def test_claim_never_returns_processing(store: TaskStore):
    """A claimed task is not claimed again."""
    await store.enqueue("t", {})
    assert len(await store.claim(5, "a")) == 1
    assert await store.claim(5, "b") == []


@pytest.mark.asyncio
async def test_concurrent_claims_are_disjoint(tmp_path: Path, clock: FakeClock):
    """Two workers on separate connections never claim the same task."""
    path = tmp_path / "shared.db"
    async with Database(path) as db_a, Database(path) as db_b:
        store_a = TaskStore(db_a, clock=clock)
        store_b = TaskStore(db_b, clock=clock)
        ids = {await store_a.enqueue("t", {"n": i}) for i in range(8)}

        claimed_a, claimed_b = await asyncio.gather(
            store_a.claim(5, "worker-a"), store_b.claim(5, "worker-b")
        )

        ids_a = {t.id for t in claimed_a}
        ids_b = {t.id for t in claimed_b}
        assert ids_a.isdisjoint(ids_b)
        assert ids_a | ids_b == ids
        assert all(t.owner == "worker-a" for t in claimed_a)
        assert all(t.owner == "worker-b" for t in claimed_b)


@pytest.mark.asyncio
async def test_complete_is_idempotent(store: TaskStore, clock: FakeClock):
    """Completing twice is a no-op the second time."""
    task_id = await store.enqueue("t", {})
    await store.claim(1, "w")
    clock.advance(3)

    assert await store.complete(task_id) is True
    assert await store.complete(task_id) is False

    task = await store.get(task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.completed_at == clock()
    assert task.owner == "w"


@pytest.mark.asyncio
async def test_complete_requires_processing(store: TaskStore):
    """Pending tasks cannot jump to completed."""
    task_id = await store.enqueue("t", {})
    assert await store.complete(task_id) is False
    assert (await store.get(task_id)).status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_complete_checks_owner(store: TaskStore):
    task_id = await store.enqueue("t", {})
    await store.claim(1, "worker-a")

    assert await store.complete(task_id, owner="worker-b") is False
    assert await store.complete(task_id, owner="worker-a") is True


@pytest.mark.asyncio
async def test_fail_schedules_retry(store: TaskStore, clock: FakeClock):
    """A failure with attempts left goes to retrying after the backoff."""
    task_id = await store.enqueue("t", {}, max_attempts=3)
    await store.claim(1, "w")
    failed_at = clock()

    status = await store.fail(task_id, "connection reset", 300)

    assert status == TaskStatus.RETRYING
    task = await store.get(task_id)
    assert task.attempts == 1
    assert task.last_error == "connection reset"
    assert task.scheduled_at == failed_at + timedelta(seconds=300)
    assert task.scheduled_at > failed_at
    assert task.owner is None
    assert task.completed_at is None


@pytest.mark.asyncio
async def test_fail_final_attempt(store: TaskStore, clock: FakeClock):
    """The failure that reaches max_attempts is terminal."""
    task_id = await store.enqueue("t", {}, max_attempts=1)
    await store.claim(1, "w")

    assert await store.fail(task_id, "boom", 60) == TaskStatus.FAILED
    task = await store.get(task_id)
    assert task.attempts == 1
    assert task.completed_at == clock()
    assert task.owner == "w"

    # Terminal rows are never reclaimed
    clock.advance(3600)
    assert await store.claim(10, "w") == []


@pytest.mark.asyncio
async def test_fail_permanent_keeps_attempts(store: TaskStore):
    task_id = await store.enqueue("t", {}, max_attempts=5)
    await store.claim(1, "w")

    assert await store.fail(task_id, "no handler", permanent=True) == TaskStatus.FAILED
    task = await store.get(task_id)
    assert task.attempts == 0
    assert task.last_error == "no handler"


@pytest.mark.asyncio
async def test_fail_rejects_non_positive_delay(store: TaskStore):
    task_id = await store.enqueue("t", {})
    await store.claim(1, "w")
    with pytest.raises(ValueError):
        await store.fail(task_id, "x", 0)
    assert (await store.get(task_id)).status == TaskStatus.PROCESSING


@pytest.mark.asyncio
async def test_fail_ignored_when_not_processing(store: TaskStore):
    task_id = await store.enqueue("t", {})
    assert await store.fail(task_id, "x", 10) is None
    assert (await store.get(task_id)).attempts == 0


@pytest.mark.asyncio
async def test_retrying_task_reclaimed_when_due(store: TaskStore, clock: FakeClock):
    task_id = await store.enqueue("t", {})
    await store.claim(1, "w")
    await store.fail(task_id, "try later", 120)

    assert await store.claim(1, "w") == []
    clock.advance(121)
    reclaimed = await store.claim(1, "w2")
    assert [t.id for t in reclaimed] == [task_id]
    assert reclaimed[0].attempts == 1


@pytest.mark.asyncio
async def test_list_and_stats(store: TaskStore, clock: FakeClock):
    """Stats count statuses, active types and stuck tasks."""
    done = await store.enqueue("report", {"n": 1})
    await store.enqueue("report", {"n": 2}, scheduled_at=clock() + timedelta(days=1))
    await store.enqueue("email", {"n": 3})
    await store.claim(2, "w")
    await store.complete(done)

    clock.advance(7200)
    stats = await store.stats(stuck_after=3600)

    assert stats.by_status["completed"] == 1
    assert stats.by_status["processing"] == 1
    assert stats.by_status["pending"] == 1
    assert stats.by_status["failed"] == 0
    assert stats.by_type == {"email": 1, "report": 1}
    assert stats.stuck == 1
    assert stats.total == 3

    completed = await store.list_tasks(TaskStatus.COMPLETED)
    assert [t.id for t in completed] == [done]


@pytest.mark.asyncio
async def test_sqlite_failure_raises_storage_error(tmp_path: Path):
    """sqlite failures surface as StorageError."""
    db = Database(tmp_path / "gone.db")
    await db.connect()
    store = TaskStore(db)
    await db.conn.execute("DROP TABLE tasks")

    with pytest.raises(StorageError):
        await store.enqueue("t", {})
    await db.close()
