"""
Tasks module - durable queue with retry and backoff.

Components:
- store: SQLite task table with atomic claim and guarded transitions
- dispatcher: claims due tasks and runs their handlers
- registry: task type -> handler mapping
- backoff: retry delay policies
- handlers: built-in handlers
"""

from conduit.tasks.backoff import BackoffPolicy, ExponentialBackoff, FixedBackoff
from conduit.tasks.dispatcher import TaskDispatcher, TickReport
from conduit.tasks.registry import TaskHandlerRegistry
from conduit.tasks.store import TaskStore
from conduit.tasks.types import QueueStats, Task, TaskStatus

__all__ = [
    "BackoffPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    "QueueStats",
    "Task",
    "TaskDispatcher",
    "TaskHandlerRegistry",
    "TaskStatus",
    "TaskStore",
    "TickReport",
]
