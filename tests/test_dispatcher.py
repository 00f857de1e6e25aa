"""Tests for the task dispatcher."""

import asyncio

import pytest
from conftest import FakeClock

from conduit.core.config import DictConfigProvider
from conduit.core.errors import PermanentTaskError, StorageError
from conduit.tasks.backoff import ExponentialBackoff, FixedBackoff
from conduit.tasks.dispatcher import TaskDispatcher
from conduit.tasks.registry import TaskHandlerRegistry
from conduit.tasks.store import TaskStore
from conduit.tasks.types import TaskStatus


@pytest.fixture
def handlers() -> TaskHandlerRegistry:
    return TaskHandlerRegistry()


@pytest.fixture
def dispatcher(store: TaskStore, handlers: TaskHandlerRegistry) -> TaskDispatcher:
    return TaskDispatcher(store, handlers, backoff=FixedBackoff(300), worker_id="test-worker")


@pytest.mark.asyncio
async def test_successful_task_completes(
    store: TaskStore, handlers: TaskHandlerRegistry, dispatcher: TaskDispatcher
):
    """Handler receives the payload; task completes."""
    seen = []

    async def handle(payload):
        seen.append(payload)

    handlers.register("collect", handle)
    task_id = await store.enqueue("collect", {"x": 1})

    report = await dispatcher.tick()

    assert seen == [{"x": 1}]
    assert report.claimed == 1
    assert report.completed == [task_id]
    task = await store.get(task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.owner == "test-worker"


@pytest.mark.asyncio
async def test_sync_handler_supported(
    store: TaskStore, handlers: TaskHandlerRegistry, dispatcher: TaskDispatcher
):
    handlers.register("plain", lambda payload: payload["x"] * 2)
    task_id = await store.enqueue("plain", {"x": 21})

    report = await dispatcher.tick()
    assert report.completed == [task_id]


@pytest.mark.asyncio
async def test_failing_task_exhausts_attempts(
    store: TaskStore, handlers: TaskHandlerRegistry, dispatcher: TaskDispatcher, clock: FakeClock
):
    """Always-failing handler with max_attempts=2 ends failed after two runs."""

    async def always_fails(payload):
        raise RuntimeError("upstream unavailable")

    handlers.register("flaky", always_fails)
    task_id = await store.enqueue("flaky", {}, max_attempts=2)

    first_failure_at = clock()
    report = await dispatcher.tick()
    assert report.retrying == [task_id]

    task = await store.get(task_id)
    assert task.status == TaskStatus.RETRYING
    assert task.attempts == 1
    retry_point = task.scheduled_at
    assert retry_point > first_failure_at

    # Not due yet
    assert (await dispatcher.tick()).claimed == 0

    clock.advance(301)
    report = await dispatcher.tick()
    assert report.failed == [task_id]

    task = await store.get(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.attempts == 2
    assert task.last_error == "upstream unavailable"
    assert task.scheduled_at == retry_point
    assert task.scheduled_at > first_failure_at


@pytest.mark.asyncio
async def test_missing_handler_fails_immediately(store: TaskStore, dispatcher: TaskDispatcher):
    """No handler: failed on first tick, attempts untouched, never retrying."""
    task_id = await store.enqueue("echo", {"x": 1}, priority=5, max_attempts=2)

    report = await dispatcher.tick()

    assert report.failed == [task_id]
    assert report.retrying == []
    task = await store.get(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.attempts == 0
    assert "echo" in task.last_error
    assert "No handler registered" in task.last_error


@pytest.mark.asyncio
async def test_handler_errors_are_isolated(
    store: TaskStore, handlers: TaskHandlerRegistry, dispatcher: TaskDispatcher
):
    """One failing handler does not affect the rest of the batch."""

    async def ok(payload):
        return "fine"

    async def broken(payload):
        raise ValueError("bad input")

    handlers.register("ok", ok)
    handlers.register("broken", broken)
    good_ids = [await store.enqueue("ok", {"n": i}) for i in range(2)]
    bad_id = await store.enqueue("broken", {})

    report = await dispatcher.tick()

    assert sorted(report.completed) == sorted(good_ids)
    assert report.retrying == [bad_id]


@pytest.mark.asyncio
async def test_handler_timeout(store: TaskStore, handlers: TaskHandlerRegistry):
    """A handler exceeding the timeout is a failed attempt."""

    async def hangs(payload):
        await asyncio.sleep(10)

    handlers.register("slow", hangs)
    dispatcher = TaskDispatcher(store, handlers, handler_timeout=0.05)
    task_id = await store.enqueue("slow", {})

    report = await dispatcher.tick()

    assert report.retrying == [task_id]
    task = await store.get(task_id)
    assert "timed out" in task.last_error


@pytest.mark.asyncio
async def test_parallelism_bounded(store: TaskStore, handlers: TaskHandlerRegistry):
    """No more than `parallelism` handlers run at once."""
    running = 0
    peak = 0

    async def track(payload):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    handlers.register("track", track)
    for i in range(6):
        await store.enqueue("track", {"n": i})

    dispatcher = TaskDispatcher(store, handlers, parallelism=2)
    report = await dispatcher.tick()

    assert len(report.completed) == 6
    assert peak == 2
    tasks = await store.list_tasks()
    assert [t.status for t in tasks] == [TaskStatus.COMPLETED] * 6


@pytest.mark.asyncio
async def test_parallel_outcomes_all_recorded(store: TaskStore, handlers: TaskHandlerRegistry):
    """Concurrent complete/fail calls on the shared connection all land."""

    async def flaky(payload):
        await asyncio.sleep(0)
        if payload["n"] % 2:
            raise RuntimeError("odd")

    handlers.register("flaky", flaky)
    for i in range(8):
        await store.enqueue("flaky", {"n": i})

    report = await TaskDispatcher(store, handlers, parallelism=8).tick()

    assert len(report.completed) == 4
    assert len(report.retrying) == 4
    assert report.lost == []
    stats = await store.stats()
    assert stats.by_status["processing"] == 0


@pytest.mark.asyncio
async def test_batch_size_limits_claim(store: TaskStore, handlers: TaskHandlerRegistry):
    handlers.register("noop", lambda payload: None)
    for i in range(5):
        await store.enqueue("noop", {"n": i})

    dispatcher = TaskDispatcher(store, handlers, batch_size=2)
    reports = await dispatcher.drain()

    assert [r.claimed for r in reports] == [2, 2, 1, 0]


@pytest.mark.asyncio
async def test_storage_error_propagates(store: TaskStore, handlers: TaskHandlerRegistry):
    """Failures recording an outcome surface from tick()."""
    handlers.register("noop", lambda payload: None)
    await store.enqueue("noop", {})

    async def broken_complete(task_id, owner=None):
        raise StorageError("database is locked")

    store.complete = broken_complete
    dispatcher = TaskDispatcher(store, handlers)

    with pytest.raises(StorageError):
        await dispatcher.tick()


@pytest.mark.asyncio
async def test_exponential_backoff_used(
    store: TaskStore, handlers: TaskHandlerRegistry, clock: FakeClock
):
    async def fails(payload):
        raise RuntimeError("nope")

    handlers.register("t", fails)
    dispatcher = TaskDispatcher(store, handlers, backoff=ExponentialBackoff(base=10, maximum=1000))
    task_id = await store.enqueue("t", {}, max_attempts=5)

    start = clock()
    await dispatcher.tick()
    first = (await store.get(task_id)).scheduled_at
    assert (first - start).total_seconds() == 10

    clock.advance(10)
    await dispatcher.tick()
    second = (await store.get(task_id)).scheduled_at
    assert (second - clock()).total_seconds() == 20


@pytest.mark.asyncio
async def test_start_stop(store: TaskStore, handlers: TaskHandlerRegistry):
    """Background loop processes tasks and stops cleanly."""
    done = asyncio.Event()

    async def signal(payload):
        done.set()

    handlers.register("signal", signal)
    await store.enqueue("signal", {})
    dispatcher = TaskDispatcher(store, handlers)

    await dispatcher.start(interval=0.01)
    assert dispatcher.running
    await asyncio.wait_for(done.wait(), timeout=2)
    await dispatcher.stop()
    assert not dispatcher.running


def test_from_config(store: TaskStore, handlers: TaskHandlerRegistry):
    config = DictConfigProvider({
        "worker_id": "box-1",
        "queue_batch_size": 7,
        "queue_parallelism": 3,
        "handler_timeout": 12,
        "queue_backoff": "exponential",
        "queue_retry_delay": 30,
    })
    dispatcher = TaskDispatcher.from_config(store, handlers, config)

    assert dispatcher.worker_id == "box-1"
    assert dispatcher.batch_size == 7
    assert dispatcher.parallelism == 3
    assert dispatcher.handler_timeout == 12
    assert isinstance(dispatcher.backoff, ExponentialBackoff)
    assert dispatcher.backoff.base == 30


@pytest.mark.asyncio
async def test_permanent_task_error_skips_retry(
    store: TaskStore, handlers: TaskHandlerRegistry, dispatcher: TaskDispatcher
):
    async def reject(payload):
        raise PermanentTaskError("bad payload")

    handlers.register("reject", reject)
    task_id = await store.enqueue("reject", {}, max_attempts=3)

    report = await dispatcher.tick()

    assert report.failed == [task_id]
    task = await store.get(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.attempts == 0
    assert task.last_error == "bad payload"
