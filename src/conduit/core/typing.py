"""Shared typing aliases used across modules."""

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeAlias

JSONDict: TypeAlias = dict[str, Any]
MessageDict: TypeAlias = dict[str, Any]
Clock: TypeAlias = Callable[[], datetime]
TaskHandler: TypeAlias = Callable[[JSONDict], Awaitable[Any] | Any]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
