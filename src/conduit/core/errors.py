"""
Error taxonomy.

Provider errors carry an ErrorKind so adapters can hand them back to the
router as typed failure values. Storage errors on task transitions always
propagate; storage errors on usage logging are swallowed by the router.
"""

from enum import Enum


class ErrorKind(Enum):
    """Category of a provider failure."""

    CONFIGURATION = "configuration"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNSUPPORTED = "unsupported"


class ConduitError(Exception):
    """Base class for all package errors."""


class ConfigurationError(ConduitError, ValueError):
    """Invalid or missing configuration."""


class StorageError(ConduitError):
    """Persistence backend failed or timed out."""


class ProviderError(ConduitError):
    """Failure reported by a provider adapter."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderConfigurationError(ProviderError):
    kind = ErrorKind.CONFIGURATION


class TransientProviderError(ProviderError):
    """Timeout, rate limit, connection failure or 5xx."""

    kind = ErrorKind.TRANSIENT


class PermanentProviderError(ProviderError):
    """4xx or malformed request/response."""

    kind = ErrorKind.PERMANENT


class UnsupportedFeatureError(ProviderError):
    """Capability registered for the provider but not implemented by its adapter."""

    kind = ErrorKind.UNSUPPORTED


class AllProvidersExhausted(ConduitError):
    """No provider could satisfy a capability request."""

    def __init__(self, capability: str, tried: list[str], last_error: str | None):
        self.capability = capability
        self.tried = list(tried)
        self.last_error = last_error
        if tried:
            message = (
                f"All providers failed for {capability} "
                f"(tried: {', '.join(tried)}): {last_error}"
            )
        else:
            message = f"No configured provider for {capability}: {last_error}"
        super().__init__(message)


class TaskHandlerMissing(ConduitError):
    """No handler registered for a task type."""

    def __init__(self, task_type: str):
        self.task_type = task_type
        super().__init__(f"No handler registered for task type: {task_type}")


class PermanentTaskError(ConduitError):
    """Raised by a handler when retrying the task cannot help (e.g. malformed payload)."""
