"""
Durable task store.

Every state change is a single guarded UPDATE inside BEGIN IMMEDIATE, so an
illegal transition (completing a task twice, failing a task another worker
already finished) matches no row and is a no-op.
"""

import json
from datetime import datetime, timedelta
from uuid import uuid4

from conduit.core.logging import get_logger
from conduit.core.typing import Clock, JSONDict, utcnow
from conduit.storage.database import Database, storage_errors
from conduit.tasks.types import QueueStats, Task, TaskStatus

logger = get_logger("tasks.store")

_INSERT = """
    INSERT INTO tasks (id, type, payload, status, priority, attempts, max_attempts,
                       created_at, scheduled_at)
    VALUES (?, ?, ?, 'pending', ?, 0, ?, ?, ?)
"""

_INSERT_UNIQUE = """
    INSERT INTO tasks (id, type, payload, status, priority, attempts, max_attempts,
                       created_at, scheduled_at)
    SELECT ?, ?, ?, 'pending', ?, 0, ?, ?, ?
    WHERE NOT EXISTS (
        SELECT 1 FROM tasks
        WHERE type = ? AND payload = ?
          AND status IN ('pending', 'processing', 'retrying')
    )
"""

_CLAIM = """
    UPDATE tasks
    SET status = 'processing', processing_started_at = ?, owner = ?
    WHERE status IN ('pending', 'retrying')
      AND id IN (
        SELECT id FROM tasks
        WHERE status IN ('pending', 'retrying') AND scheduled_at <= ?
        ORDER BY priority ASC, scheduled_at ASC
        LIMIT ?
      )
    RETURNING *
"""

# All SET expressions see the pre-update row, so attempts + 1 is the new count
_FAIL = """
    UPDATE tasks
    SET attempts = attempts + 1,
        last_error = ?,
        status = CASE WHEN attempts + 1 >= max_attempts THEN 'failed' ELSE 'retrying' END,
        scheduled_at = CASE WHEN attempts + 1 >= max_attempts THEN scheduled_at ELSE ? END,
        completed_at = CASE WHEN attempts + 1 >= max_attempts THEN ? ELSE NULL END,
        owner = CASE WHEN attempts + 1 >= max_attempts THEN owner ELSE NULL END
    WHERE id = ? AND status = 'processing'
"""

_FAIL_PERMANENT = """
    UPDATE tasks
    SET status = 'failed', last_error = ?, completed_at = ?
    WHERE id = ? AND status = 'processing'
"""


def _owner_guard(sql: str, params: list, owner: str | None) -> tuple[str, list]:
    if owner is None:
        return sql, params
    return sql + " AND owner = ?", [*params, owner]


class TaskStore:
    """SQLite-backed task queue."""

    def __init__(self, db: Database, clock: Clock = utcnow):
        self.db = db
        self._clock = clock

    async def enqueue(
        self,
        task_type: str,
        payload: JSONDict | None = None,
        priority: int = 0,
        max_attempts: int = 3,
        scheduled_at: datetime | None = None,
        *,
        unique: bool = False,
    ) -> str:
        """
        Add a pending task.

        Args:
            task_type: Handler key
            payload: JSON-serialisable dict passed to the handler
            priority: Lower runs first
            max_attempts: Failed attempts allowed before the task fails for good
            scheduled_at: Earliest run time (defaults to now)
            unique: Return the id of an identical active task instead of inserting

        Returns:
            Task id
        """
        if not task_type:
            raise ValueError("Task type is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        payload = payload if payload is not None else {}
        if not isinstance(payload, dict):
            raise ValueError("Task payload must be a dict")
        try:
            encoded = json.dumps(payload, sort_keys=True)
        except TypeError as e:
            raise ValueError(f"Task payload is not JSON-serialisable: {e}") from e

        task_id = uuid4().hex
        now = self._clock()
        scheduled = scheduled_at or now
        params = [task_id, task_type, encoded, priority, max_attempts, now, scheduled]

        async with self.db.transaction("enqueue") as conn:
            if not unique:
                await conn.execute(_INSERT, params)
            else:
                cursor = await conn.execute(_INSERT_UNIQUE, [*params, task_type, encoded])
                if cursor.rowcount == 0:
                    async with conn.execute(
                        "SELECT id FROM tasks WHERE type = ? AND payload = ? "
                        "AND status IN ('pending', 'processing', 'retrying') LIMIT 1",
                        (task_type, encoded),
                    ) as existing:
                        row = await existing.fetchone()
                    logger.debug(f"Task {task_type} already queued as {row['id']}")
                    return row["id"]

        logger.info(f"Enqueued task {task_id} ({task_type}, priority={priority})")
        return task_id

    async def claim(self, batch_size: int, worker_id: str) -> list[Task]:
        """Atomically move up to batch_size due tasks to processing for worker_id."""
        if batch_size <= 0:
            return []
        now = self._clock()
        async with self.db.transaction("claim") as conn:
            async with conn.execute(_CLAIM, (now, worker_id, now, batch_size)) as cursor:
                rows = await cursor.fetchall()

        # RETURNING order is unspecified
        tasks = sorted((Task.from_row(row) for row in rows), key=lambda t: (t.priority, t.scheduled_at))
        if tasks:
            logger.info(f"Worker {worker_id} claimed {len(tasks)} task(s)")
        return tasks

    async def complete(self, task_id: str, owner: str | None = None) -> bool:
        """processing -> completed. Returns False if the task was not processing."""
        sql, params = _owner_guard(
            "UPDATE tasks SET status = 'completed', completed_at = ? "
            "WHERE id = ? AND status = 'processing'",
            [self._clock(), task_id],
            owner,
        )
        async with self.db.transaction("complete") as conn:
            cursor = await conn.execute(sql, params)
            updated = cursor.rowcount > 0

        if updated:
            logger.info(f"Task {task_id} completed")
        else:
            logger.debug(f"Complete ignored for task {task_id}: not processing")
        return updated

    async def fail(
        self,
        task_id: str,
        error_message: str,
        backoff_delay: float | None = None,
        *,
        permanent: bool = False,
        owner: str | None = None,
    ) -> TaskStatus | None:
        """
        Record a failed attempt.

        Moves processing -> retrying (scheduled backoff_delay seconds from now)
        while attempts remain, otherwise -> failed. permanent=True fails the task
        immediately without counting an attempt.

        Returns:
            New status, or None if the task was not processing
        """
        now = self._clock()
        if permanent:
            sql, params = _owner_guard(_FAIL_PERMANENT, [error_message, now, task_id], owner)
        else:
            if backoff_delay is None or backoff_delay <= 0:
                raise ValueError("backoff_delay must be positive")
            retry_at = now + timedelta(seconds=backoff_delay)
            sql, params = _owner_guard(_FAIL, [error_message, retry_at, now, task_id], owner)

        async with self.db.transaction("fail") as conn:
            async with conn.execute(sql + " RETURNING status, attempts", params) as cursor:
                rows = await cursor.fetchall()

        row = rows[0] if rows else None
        if row is None:
            logger.debug(f"Fail ignored for task {task_id}: not processing")
            return None

        status = TaskStatus(row["status"])
        if status == TaskStatus.FAILED:
            logger.warning(f"Task {task_id} failed permanently after {row['attempts']} attempt(s): {error_message}")
        else:
            logger.info(f"Task {task_id} will retry in {backoff_delay:g}s (attempt {row['attempts']}): {error_message}")
        return status

    async def get(self, task_id: str) -> Task | None:
        with storage_errors("get task"):
            async with self.db.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)) as cursor:
                row = await cursor.fetchone()
        return Task.from_row(row) if row else None

    async def list_tasks(self, status: TaskStatus | None = None, limit: int = 100) -> list[Task]:
        """Tasks, newest first, optionally filtered by status."""
        sql = "SELECT * FROM tasks"
        params: list = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with storage_errors("list tasks"):
            async with self.db.conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        return [Task.from_row(row) for row in rows]

    async def stats(self, stuck_after: float = 3600.0) -> QueueStats:
        """Counts per status and type plus tasks processing longer than stuck_after seconds."""
        cutoff = self._clock() - timedelta(seconds=stuck_after)
        by_status = {status.value: 0 for status in TaskStatus}

        with storage_errors("queue stats"):
            async with self.db.conn.execute(
                "SELECT status, COUNT(*) AS n FROM tasks GROUP BY status"
            ) as cursor:
                for row in await cursor.fetchall():
                    by_status[row["status"]] = row["n"]

            async with self.db.conn.execute(
                "SELECT type, COUNT(*) AS n FROM tasks "
                "WHERE status IN ('pending', 'processing', 'retrying') "
                "GROUP BY type ORDER BY type"
            ) as cursor:
                by_type = {row["type"]: row["n"] for row in await cursor.fetchall()}

            async with self.db.conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE status = 'processing' "
                "AND processing_started_at < ?",
                (cutoff,),
            ) as cursor:
                (stuck,) = await cursor.fetchone()

        if stuck:
            logger.warning(f"{stuck} task(s) processing for more than {stuck_after:g}s")
        return QueueStats(by_status=by_status, by_type=by_type, stuck=stuck)
