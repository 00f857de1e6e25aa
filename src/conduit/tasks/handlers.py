"""Built-in task handlers."""

from typing import Any

from conduit.core.errors import PermanentTaskError
from conduit.core.logging import get_logger
from conduit.core.typing import JSONDict
from conduit.providers.base import Capability, InvokeOptions
from conduit.routing.router import CapabilityRouter
from conduit.tasks.registry import TaskHandlerRegistry

logger = get_logger("tasks.handlers")

CAPABILITY_DISPATCH = "capability_dispatch"

# InvokeOptions fields a task payload may set
_OPTION_FIELDS = ("model", "timeout", "feature", "temperature", "max_tokens", "system_prompt", "params")


def options_from_payload(data: JSONDict | None) -> InvokeOptions:
    """Build InvokeOptions from a JSON dict, ignoring unknown keys.

    Credentials are never read from task payloads since payloads are stored
    in plain text.
    """
    data = data or {}
    return InvokeOptions(**{key: data[key] for key in _OPTION_FIELDS if key in data})


def _parse_payload(task_payload: JSONDict) -> tuple[Capability, InvokeOptions]:
    """Validate a capability_dispatch payload; malformed payloads fail permanently."""
    if "capability" not in task_payload:
        raise PermanentTaskError("capability_dispatch payload needs a 'capability' key")
    try:
        capability = Capability(task_payload["capability"])
    except ValueError as e:
        raise PermanentTaskError(f"Unknown capability: {task_payload['capability']}") from e
    options = task_payload.get("options")
    if options is not None and not isinstance(options, dict):
        raise PermanentTaskError("capability_dispatch options must be an object")
    return capability, options_from_payload(options)


def capability_dispatch_handler(router: CapabilityRouter):
    """Handler that routes {"capability", "payload", "options"} through the router.

    Raises AllProvidersExhausted when every provider fails so the task is retried,
    and PermanentTaskError for payloads no retry can fix.
    """

    async def handle(task_payload: JSONDict) -> Any:
        capability, options = _parse_payload(task_payload)
        if not options.feature:
            options.feature = "task_queue"

        result = await router.dispatch(capability, task_payload.get("payload"), options)
        result.raise_for_status()
        logger.debug(f"Deferred {capability.value} served by {result.provider}")
        return result.content

    return handle


def register_builtin_handlers(registry: TaskHandlerRegistry, router: CapabilityRouter) -> None:
    """Register the handlers shipped with the package."""
    registry.register(CAPABILITY_DISPATCH, capability_dispatch_handler(router))
