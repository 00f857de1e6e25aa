"""Task handler registry - maps task type keys to handler callables."""

import inspect
from typing import Any

from conduit.core.logging import get_logger
from conduit.core.typing import JSONDict, TaskHandler

logger = get_logger("tasks.registry")


class TaskHandlerRegistry:
    """Explicit mapping of task type to handler."""

    def __init__(self):
        self._handlers: dict[str, TaskHandler] = {}

    def register(self, task_type: str, handler: TaskHandler) -> None:
        """Register a handler for a task type."""
        if not task_type:
            raise ValueError("Task type is required")
        if not callable(handler):
            raise TypeError(f"Handler for {task_type} is not callable")
        if task_type in self._handlers:
            logger.warning(f"Handler for {task_type} already registered, overwriting")
        self._handlers[task_type] = handler
        logger.debug(f"Registered handler: {task_type}")

    def unregister(self, task_type: str) -> bool:
        """Remove a handler. Returns False if none was registered."""
        if task_type in self._handlers:
            del self._handlers[task_type]
            logger.debug(f"Unregistered handler: {task_type}")
            return True
        return False

    def get(self, task_type: str) -> TaskHandler | None:
        return self._handlers.get(task_type)

    def has(self, task_type: str) -> bool:
        return task_type in self._handlers

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def handler(self, task_type: str):
        """Decorator form of register()."""

        def decorator(func: TaskHandler) -> TaskHandler:
            self.register(task_type, func)
            return func

        return decorator


async def run_handler(handler: TaskHandler, payload: JSONDict) -> Any:
    """Call a handler, awaiting its result when it returns an awaitable."""
    result = handler(payload)
    if inspect.isawaitable(result):
        result = await result
    return result
