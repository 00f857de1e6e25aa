"""
Usage ledger.

Append-only log of provider attempts with a retention cap. Non-system rows
beyond max_records are evicted oldest first (timestamp, then id) in the same
transaction as the insert.
"""

from datetime import datetime

from conduit.core.logging import get_logger
from conduit.storage.database import Database, storage_errors
from conduit.usage.types import ProviderUsageSummary, UsageFilter, UsageRecord

logger = get_logger("usage.ledger")

_INSERT = """
    INSERT INTO usage_records (
        timestamp, provider, feature, capability, model, success,
        prompt_tokens, completion_tokens, total_tokens, cost_usd,
        error, request_summary, latency_ms, system
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_EVICT = """
    DELETE FROM usage_records WHERE id IN (
        SELECT id FROM usage_records
        WHERE system = 0
        ORDER BY timestamp ASC, id ASC
        LIMIT ?
    )
"""


class UsageLedger:
    """SQLite-backed usage log."""

    def __init__(self, db: Database, max_records: int = 10_000):
        if max_records < 1:
            raise ValueError("max_records must be at least 1")
        self.db = db
        self.max_records = max_records

    async def record(self, entry: UsageRecord) -> int:
        """Append a record and evict excess rows; returns the new row id."""
        async with self.db.transaction("usage record") as conn:
            cursor = await conn.execute(
                _INSERT,
                (
                    entry.timestamp,
                    entry.provider,
                    entry.feature,
                    entry.capability,
                    entry.model,
                    int(entry.success),
                    entry.prompt_tokens,
                    entry.completion_tokens,
                    entry.total_tokens,
                    entry.cost_usd,
                    entry.error,
                    entry.request_summary,
                    entry.latency_ms,
                    int(entry.system),
                ),
            )
            record_id = cursor.lastrowid

            async with conn.execute(
                "SELECT COUNT(*) FROM usage_records WHERE system = 0"
            ) as count_cursor:
                (count,) = await count_cursor.fetchone()

            excess = count - self.max_records
            if excess > 0:
                await conn.execute(_EVICT, (excess,))
                logger.debug(f"Evicted {excess} usage records")

        entry.id = record_id
        return record_id

    async def query(
        self,
        filters: UsageFilter | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[UsageRecord]:
        """Records matching filters, newest first."""
        where, params = (filters or UsageFilter()).where()
        sql = f"""
            SELECT * FROM usage_records {where}
            ORDER BY timestamp DESC, id DESC
            LIMIT ? OFFSET ?
        """
        with storage_errors("usage query"):
            async with self.db.conn.execute(sql, (*params, limit, offset)) as cursor:
                rows = await cursor.fetchall()
        return [UsageRecord.from_row(row) for row in rows]

    async def count(self, filters: UsageFilter | None = None) -> int:
        where, params = (filters or UsageFilter()).where()
        with storage_errors("usage count"):
            async with self.db.conn.execute(
                f"SELECT COUNT(*) FROM usage_records {where}", params
            ) as cursor:
                (total,) = await cursor.fetchone()
        return total

    async def summary(self, since: datetime | None = None) -> dict[str, ProviderUsageSummary]:
        """Totals per provider, optionally limited to records since a time."""
        where, params = UsageFilter(since=since).where()
        sql = f"""
            SELECT provider,
                   COUNT(*) AS calls,
                   SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END) AS failures,
                   SUM(prompt_tokens) AS prompt_tokens,
                   SUM(completion_tokens) AS completion_tokens,
                   SUM(cost_usd) AS cost_usd,
                   AVG(latency_ms) AS avg_latency_ms
            FROM usage_records {where}
            GROUP BY provider
            ORDER BY provider
        """
        with storage_errors("usage summary"):
            async with self.db.conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()

        return {
            row["provider"]: ProviderUsageSummary(
                provider=row["provider"],
                calls=row["calls"],
                failures=row["failures"] or 0,
                prompt_tokens=row["prompt_tokens"] or 0,
                completion_tokens=row["completion_tokens"] or 0,
                cost_usd=row["cost_usd"] or 0.0,
                avg_latency_ms=row["avg_latency_ms"] or 0.0,
            )
            for row in rows
        }
