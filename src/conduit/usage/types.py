"""Usage ledger data types."""

from dataclasses import dataclass, field
from datetime import datetime

from conduit.core.typing import utcnow
from conduit.storage.database import parse_datetime


@dataclass
class UsageRecord:
    """One provider invocation attempt."""

    provider: str
    feature: str
    capability: str
    success: bool
    model: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    error: str | None = None
    request_summary: str = ""
    latency_ms: int = 0
    system: bool = False  # excluded from the retention cap
    timestamp: datetime = field(default_factory=utcnow)
    id: int | None = None  # assigned by storage

    @classmethod
    def from_row(cls, row) -> "UsageRecord":
        """Build from a usage_records row (sqlite3.Row or mapping)."""
        return cls(
            id=row["id"],
            timestamp=parse_datetime(row["timestamp"]),
            provider=row["provider"],
            feature=row["feature"],
            capability=row["capability"],
            model=row["model"],
            success=bool(row["success"]),
            prompt_tokens=row["prompt_tokens"],
            completion_tokens=row["completion_tokens"],
            total_tokens=row["total_tokens"],
            cost_usd=row["cost_usd"],
            error=row["error"],
            request_summary=row["request_summary"] or "",
            latency_ms=row["latency_ms"],
            system=bool(row["system"]),
        )


@dataclass
class UsageFilter:
    """Optional equality filters for ledger queries."""

    provider: str | None = None
    success: bool | None = None
    feature: str | None = None
    capability: str | None = None
    since: datetime | None = None

    def where(self) -> tuple[str, list]:
        """SQL WHERE clause (possibly empty) and its parameters."""
        clauses = []
        params: list = []
        if self.provider is not None:
            clauses.append("provider = ?")
            params.append(self.provider)
        if self.success is not None:
            clauses.append("success = ?")
            params.append(int(self.success))
        if self.feature is not None:
            clauses.append("feature = ?")
            params.append(self.feature)
        if self.capability is not None:
            clauses.append("capability = ?")
            params.append(self.capability)
        if self.since is not None:
            clauses.append("timestamp >= ?")
            params.append(self.since)
        if not clauses:
            return "", params
        return "WHERE " + " AND ".join(clauses), params


@dataclass
class ProviderUsageSummary:
    """Aggregated usage for one provider."""

    provider: str
    calls: int = 0
    failures: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0
    avg_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return (self.calls - self.failures) / self.calls if self.calls else 0.0
