"""SQLite persistence backend for tasks and usage records."""

import asyncio
import sqlite3
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from conduit.core.errors import StorageError
from conduit.core.logging import get_logger

logger = get_logger("storage.database")


def _adapt_datetime(dt: datetime) -> str:
    """Store datetimes as fixed-width UTC ISO strings so they compare lexically."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _convert_datetime(val: bytes) -> datetime:
    return parse_datetime(val.decode())


def parse_datetime(value: datetime | str | bytes | None) -> datetime | None:
    """Parse a stored timestamp; RETURNING columns come back untyped."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        if isinstance(value, bytes):
            value = value.decode()
        dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Deferred work items
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON object
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'retrying', 'completed', 'failed')),
    priority INTEGER NOT NULL DEFAULT 0,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3 CHECK (max_attempts >= 1),
    last_error TEXT,
    created_at DATETIME NOT NULL,
    scheduled_at DATETIME NOT NULL,
    processing_started_at DATETIME,
    completed_at DATETIME,
    owner TEXT,
    CHECK (attempts <= max_attempts)
);

CREATE INDEX IF NOT EXISTS idx_tasks_claim
    ON tasks(status, priority, scheduled_at);

CREATE INDEX IF NOT EXISTS idx_tasks_type
    ON tasks(type, status);

-- Provider invocation ledger
CREATE TABLE IF NOT EXISTS usage_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME NOT NULL,
    provider TEXT NOT NULL,
    feature TEXT NOT NULL,
    capability TEXT NOT NULL,
    model TEXT,
    success INTEGER NOT NULL,
    prompt_tokens INTEGER NOT NULL DEFAULT 0,
    completion_tokens INTEGER NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    cost_usd REAL NOT NULL DEFAULT 0,
    error TEXT,
    request_summary TEXT,
    latency_ms INTEGER NOT NULL DEFAULT 0,
    system INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_usage_eviction
    ON usage_records(system, timestamp, id);

CREATE INDEX IF NOT EXISTS idx_usage_provider
    ON usage_records(provider, timestamp);
"""


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate sqlite failures into StorageError."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error(f"Storage failure during {operation}: {e}")
        raise StorageError(f"{operation} failed: {e}") from e


class Database:
    """aiosqlite connection shared by the task store and usage ledger.

    Writes go through transaction(), which takes the SQLite write lock up front
    (BEGIN IMMEDIATE). Transactions on this connection are serialized by an
    asyncio.Lock; the busy timeout bounds how long any write waits for a
    concurrent writer on another connection.
    """

    def __init__(self, db_path: Path | str, timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open connection and create schema."""
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with storage_errors("connect"):
            self._conn = await aiosqlite.connect(
                self.db_path,
                timeout=self.timeout,
                isolation_level=None,
                detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            )
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(SCHEMA)
        logger.info(f"Connected to database: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self, operation: str = "transaction") -> AsyncIterator[aiosqlite.Connection]:
        """Run a block inside BEGIN IMMEDIATE ... COMMIT, rolling back on error."""
        conn = self.conn
        try:
            await asyncio.wait_for(self._write_lock.acquire(), self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Storage failure during {operation}: write lock wait timed out")
            raise StorageError(f"{operation} failed: timed out waiting for write lock") from e

        try:
            with storage_errors(operation):
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    await conn.rollback()
                    raise
                await conn.commit()
        finally:
            self._write_lock.release()
