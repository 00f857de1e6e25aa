"""Per-provider request rate limiting."""

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from conduit.core.errors import TransientProviderError
from conduit.core.logging import get_logger

logger = get_logger("providers.ratelimit")


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window requests-per-minute limiter, one window per provider.

    Providers without a configured limit are never throttled.
    """

    def __init__(
        self,
        limits: Mapping[str, int] | None = None,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limits = dict(limits or {})
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def limit_for(self, provider_id: str) -> int | None:
        return self._limits.get(provider_id)

    def acquire(self, provider_id: str) -> None:
        """Count one request against the provider's window.

        Raises:
            TransientProviderError: If the window is already full
        """
        limit = self._limits.get(provider_id)
        if not limit:
            return

        now = self._clock()
        window = self._windows.get(provider_id)
        if window is None or now >= window.reset_at:
            window = _Window(count=0, reset_at=now + self._window_seconds)
            self._windows[provider_id] = window

        if window.count >= limit:
            logger.warning(f"Rate limit reached for {provider_id} ({limit}/window)")
            raise TransientProviderError(
                f"Rate limit exceeded for {provider_id} ({limit} requests per "
                f"{self._window_seconds:g}s)",
                status_code=429,
            )
        window.count += 1

    def remaining(self, provider_id: str) -> int | None:
        """Requests left in the current window, None when unlimited."""
        limit = self._limits.get(provider_id)
        if not limit:
            return None
        window = self._windows.get(provider_id)
        if window is None or self._clock() >= window.reset_at:
            return limit
        return max(0, limit - window.count)
