"""
Task dispatcher.

Each tick claims due tasks, runs their handlers and records the outcome.
A handler failure is contained to its own task; a storage failure while
recording an outcome propagates out of tick().
"""

import asyncio
import contextlib
from dataclasses import dataclass, field

from conduit.core.config import ConfigProvider
from conduit.core.errors import PermanentTaskError, TaskHandlerMissing
from conduit.core.logging import get_logger
from conduit.tasks.backoff import BackoffPolicy, FixedBackoff, backoff_from_config
from conduit.tasks.registry import TaskHandlerRegistry, run_handler
from conduit.tasks.store import TaskStore
from conduit.tasks.types import Task, TaskStatus

logger = get_logger("tasks.dispatcher")


@dataclass
class TickReport:
    """What one tick did, by task id."""

    claimed: int = 0
    completed: list[str] = field(default_factory=list)
    retrying: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    lost: list[str] = field(default_factory=list)  # no longer ours when recording

    def record(self, task_id: str, status: TaskStatus | None) -> None:
        if status == TaskStatus.COMPLETED:
            self.completed.append(task_id)
        elif status == TaskStatus.RETRYING:
            self.retrying.append(task_id)
        elif status == TaskStatus.FAILED:
            self.failed.append(task_id)
        else:
            self.lost.append(task_id)


class TaskDispatcher:
    """Claims and executes queued tasks."""

    def __init__(
        self,
        store: TaskStore,
        handlers: TaskHandlerRegistry,
        backoff: BackoffPolicy | None = None,
        worker_id: str = "worker",
        batch_size: int = 50,
        parallelism: int = 1,
        handler_timeout: float = 300.0,
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.store = store
        self.handlers = handlers
        self.backoff = backoff or FixedBackoff()
        self.worker_id = worker_id
        self.batch_size = batch_size
        self.parallelism = parallelism
        self.handler_timeout = handler_timeout
        self._running = False
        self._loop_task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        store: TaskStore,
        handlers: TaskHandlerRegistry,
        config: ConfigProvider,
    ) -> "TaskDispatcher":
        return cls(
            store,
            handlers,
            backoff=backoff_from_config(config),
            worker_id=config.get_option("worker_id", "worker"),
            batch_size=int(config.get_option("queue_batch_size", 50)),
            parallelism=int(config.get_option("queue_parallelism", 1)),
            handler_timeout=float(config.get_option("handler_timeout", 300.0)),
        )

    async def tick(self) -> TickReport:
        """Claim up to batch_size due tasks and run them.

        Raises:
            StorageError: If claiming or recording an outcome fails
        """
        tasks = await self.store.claim(self.batch_size, self.worker_id)
        report = TickReport(claimed=len(tasks))
        if not tasks:
            return report

        semaphore = asyncio.Semaphore(self.parallelism)

        async def run(task: Task) -> None:
            async with semaphore:
                report.record(task.id, await self._execute(task))

        # Let every claimed task settle before surfacing a storage error
        results = await asyncio.gather(*(run(task) for task in tasks), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        logger.info(
            f"Tick: {report.claimed} claimed, {len(report.completed)} completed, "
            f"{len(report.retrying)} retrying, {len(report.failed)} failed"
        )
        return report

    async def _execute(self, task: Task) -> TaskStatus | None:
        handler = self.handlers.get(task.type)
        if handler is None:
            error = TaskHandlerMissing(task.type)
            logger.error(f"Task {task.id}: {error}")
            return await self.store.fail(task.id, str(error), permanent=True, owner=self.worker_id)

        logger.debug(f"Running task {task.id} ({task.type}), attempt {task.attempts + 1}")
        try:
            await asyncio.wait_for(run_handler(handler, task.payload), self.handler_timeout)
        except asyncio.TimeoutError:
            error_message = f"Handler timed out after {self.handler_timeout:g}s"
        except PermanentTaskError as e:
            logger.error(f"Task {task.id} ({task.type}) rejected: {e}")
            return await self.store.fail(task.id, str(e), permanent=True, owner=self.worker_id)
        except Exception as e:
            logger.warning(f"Task {task.id} ({task.type}) raised: {e}", exc_info=True)
            error_message = str(e) or type(e).__name__
        else:
            completed = await self.store.complete(task.id, owner=self.worker_id)
            return TaskStatus.COMPLETED if completed else None

        delay = self.backoff.delay(task.attempts + 1)
        return await self.store.fail(task.id, error_message, delay, owner=self.worker_id)

    async def drain(self, max_ticks: int = 100) -> list[TickReport]:
        """Tick until a tick claims nothing (or max_ticks is reached)."""
        reports = []
        for _ in range(max_ticks):
            report = await self.tick()
            reports.append(report)
            if not report.claimed:
                break
        return reports

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, interval: float = 60.0) -> None:
        """Start ticking every interval seconds in the background."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop(interval))
        logger.info(f"Dispatcher {self.worker_id} started (interval: {interval:g}s)")

    async def stop(self) -> None:
        """Stop the background loop, waiting for it to exit."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        logger.info(f"Dispatcher {self.worker_id} stopped")

    async def _loop(self, interval: float) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Dispatcher tick failed: {e}", exc_info=True)
            await asyncio.sleep(interval)
