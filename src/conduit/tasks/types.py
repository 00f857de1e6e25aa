"""Task type definitions."""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from conduit.core.typing import JSONDict
from conduit.storage.database import parse_datetime


class TaskStatus(Enum):
    """Lifecycle states of a queued task."""

    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Task:
    """A deferred unit of work."""

    id: str
    type: str
    payload: JSONDict
    status: TaskStatus
    priority: int  # lower runs first
    attempts: int
    max_attempts: int
    created_at: datetime
    scheduled_at: datetime
    last_error: str | None = None
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
    owner: str | None = None

    @classmethod
    def from_row(cls, row) -> "Task":
        """Create from a tasks row (sqlite3.Row or mapping)."""
        return cls(
            id=row["id"],
            type=row["type"],
            payload=json.loads(row["payload"]),
            status=TaskStatus(row["status"]),
            priority=row["priority"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            last_error=row["last_error"],
            created_at=parse_datetime(row["created_at"]),
            scheduled_at=parse_datetime(row["scheduled_at"]),
            processing_started_at=parse_datetime(row["processing_started_at"]),
            completed_at=parse_datetime(row["completed_at"]),
            owner=row["owner"],
        )

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dict."""
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "status": self.status.value,
            "priority": self.priority,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "scheduled_at": self.scheduled_at.isoformat(),
            "processing_started_at": (
                self.processing_started_at.isoformat() if self.processing_started_at else None
            ),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "owner": self.owner,
        }


@dataclass
class QueueStats:
    """Queue health snapshot."""

    by_status: dict[str, int]
    by_type: dict[str, int]
    stuck: int  # processing longer than the stuck threshold

    @property
    def total(self) -> int:
        return sum(self.by_status.values())
