"""Retry delay policies for failed tasks."""

from abc import ABC, abstractmethod

from conduit.core.config import ConfigProvider
from conduit.core.errors import ConfigurationError


class BackoffPolicy(ABC):
    """Maps a failed attempt number (1-based) to a positive delay in seconds."""

    @abstractmethod
    def delay(self, attempt: int) -> float:
        ...


class FixedBackoff(BackoffPolicy):
    """Same delay after every failure (five minutes by default)."""

    def __init__(self, seconds: float = 300.0):
        if seconds <= 0:
            raise ValueError("Backoff delay must be positive")
        self.seconds = seconds

    def delay(self, attempt: int) -> float:
        return self.seconds


class ExponentialBackoff(BackoffPolicy):
    """base * factor ** (attempt - 1), capped at maximum."""

    def __init__(self, base: float = 300.0, factor: float = 2.0, maximum: float = 3600.0):
        if base <= 0 or maximum <= 0:
            raise ValueError("Backoff delays must be positive")
        if factor < 1:
            raise ValueError("Backoff factor must be at least 1")
        self.base = base
        self.factor = factor
        self.maximum = maximum

    def delay(self, attempt: int) -> float:
        return min(self.base * self.factor ** max(attempt - 1, 0), self.maximum)


def backoff_from_config(config: ConfigProvider) -> BackoffPolicy:
    """Build the policy named by the queue_backoff option."""
    kind = config.get_option("queue_backoff", "fixed")
    base = float(config.get_option("queue_retry_delay", 300.0))
    if kind == "fixed":
        return FixedBackoff(base)
    if kind == "exponential":
        return ExponentialBackoff(base, maximum=float(config.get_option("queue_backoff_max", 3600.0)))
    raise ConfigurationError(f"Unknown backoff policy: {kind}")
