"""Capability router - tries providers in policy order until one succeeds."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from conduit.core.config import ConfigProvider
from conduit.core.errors import AllProvidersExhausted, ErrorKind
from conduit.core.logging import get_logger
from conduit.core.typing import Clock, utcnow
from conduit.providers.base import (
    Capability,
    InvokeOptions,
    InvokeOutcome,
    ProviderAdapter,
    ProviderFailure,
    ProviderResponse,
    summarize_payload,
)
from conduit.providers.registry import ProviderRegistry
from conduit.routing.policy import RoutingPolicy, policy_from_config
from conduit.usage.ledger import UsageLedger
from conduit.usage.types import UsageRecord

logger = get_logger("routing.router")

DEFAULT_FEATURE = "general"


@dataclass
class DispatchResult:
    """Outcome of a routed capability request."""

    success: bool
    capability: Capability
    content: Any = None
    provider: str | None = None
    model: str | None = None
    tried_providers: list[str] = field(default_factory=list)
    skipped_providers: list[str] = field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None
    response: ProviderResponse | None = None

    def raise_for_status(self) -> "DispatchResult":
        """Raise AllProvidersExhausted unless the dispatch succeeded."""
        if not self.success:
            raise AllProvidersExhausted(self.capability.value, self.tried_providers, self.error)
        return self


class CapabilityRouter:
    """Routes capability requests to providers with sequential fallback."""

    def __init__(
        self,
        registry: ProviderRegistry,
        config: ConfigProvider,
        ledger: UsageLedger | None = None,
        clock: Clock = utcnow,
    ):
        self.registry = registry
        self.config = config
        self.ledger = ledger
        self._clock = clock

    def policy_for(self, capability: Capability) -> RoutingPolicy:
        return policy_from_config(self.config, capability)

    def _plan(
        self, capability: Capability, options: InvokeOptions
    ) -> tuple[list[str], list[str]]:
        """Split the policy order into (candidates, skipped)."""
        candidates: list[str] = []
        skipped: list[str] = []
        for provider_id in self.policy_for(capability).order:
            if provider_id in candidates or provider_id in skipped:
                continue

            spec = self.registry.spec(provider_id)
            if spec is not None and not spec.supports(capability):
                logger.debug(f"Provider {provider_id} does not support {capability.value}")
                continue

            if self.registry.get(provider_id) is None:
                logger.warning(f"Skipping {provider_id}: no adapter registered")
                skipped.append(provider_id)
                continue

            missing = self.registry.missing_config(provider_id, self.config, options)
            if missing:
                logger.warning(f"Skipping {provider_id}: missing config {', '.join(missing)}")
                skipped.append(provider_id)
                continue

            candidates.append(provider_id)
        return candidates, skipped

    def candidates(self, capability: Capability, options: InvokeOptions | None = None) -> list[str]:
        """Providers that would be tried for a request, in order."""
        return self._plan(Capability(capability), options or InvokeOptions())[0]

    async def dispatch(
        self,
        capability: Capability | str,
        payload: Any,
        options: InvokeOptions | None = None,
    ) -> DispatchResult:
        """Route a request to the first provider that succeeds.

        Args:
            capability: Capability (or its string value)
            payload: Capability-specific input (prompt, messages, bytes, ...)
            options: Model/credential overrides, timeout, feature tag

        Returns:
            DispatchResult; failure is returned, not raised
        """
        capability = Capability(capability)
        options = options or InvokeOptions()
        candidates, skipped = self._plan(capability, options)
        summary = summarize_payload(capability, payload)

        tried: list[str] = []
        last_error: str | None = None
        last_kind: ErrorKind | None = None

        for provider_id in candidates:
            adapter = self.registry.get(provider_id)
            outcome = await self._invoke(adapter, capability, payload, options)

            if outcome.ok:
                await self._record(capability, options, summary, outcome)
                logger.info(
                    f"{capability.value}: served by {provider_id} ({outcome.model}, "
                    f"{outcome.latency_ms}ms, ${outcome.cost_usd:.4f})"
                )
                return DispatchResult(
                    success=True,
                    capability=capability,
                    content=outcome.content,
                    provider=provider_id,
                    model=outcome.model,
                    tried_providers=tried + [provider_id],
                    skipped_providers=skipped,
                    response=outcome,
                )

            if outcome.kind == ErrorKind.CONFIGURATION:
                logger.warning(f"Skipping {provider_id}: {outcome.message}")
                skipped.append(provider_id)
                continue

            tried.append(provider_id)
            last_error = outcome.message
            last_kind = outcome.kind
            await self._record(capability, options, summary, outcome)
            logger.warning(
                f"{capability.value}: {provider_id} failed ({outcome.kind.value}): {outcome.message}"
            )

        if not tried:
            last_error = f"No configured provider supports {capability.value}"
            last_kind = ErrorKind.CONFIGURATION

        logger.error(
            f"{capability.value}: all providers failed "
            f"(tried: {', '.join(tried) or 'none'}): {last_error}"
        )
        return DispatchResult(
            success=False,
            capability=capability,
            tried_providers=tried,
            skipped_providers=skipped,
            error=last_error,
            error_kind=last_kind,
        )

    async def _invoke(
        self,
        adapter: ProviderAdapter,
        capability: Capability,
        payload: Any,
        options: InvokeOptions,
    ) -> InvokeOutcome:
        timeout = options.timeout or float(self.config.get_option("provider_timeout", 60.0))
        start = time.monotonic()
        try:
            return await asyncio.wait_for(adapter.invoke(capability, payload, options), timeout)
        except asyncio.TimeoutError:
            return ProviderFailure(
                provider=adapter.provider_id,
                kind=ErrorKind.TRANSIENT,
                message=f"Timed out after {timeout:g}s",
                model=adapter.resolve_model(capability, options),
                latency_ms=int((time.monotonic() - start) * 1000),
            )

    async def _record(
        self,
        capability: Capability,
        options: InvokeOptions,
        summary: str,
        outcome: InvokeOutcome,
    ) -> None:
        """Write a usage record; failures here never fail the dispatch."""
        if self.ledger is None:
            return

        entry = UsageRecord(
            timestamp=self._clock(),
            provider=outcome.provider,
            feature=options.feature or DEFAULT_FEATURE,
            capability=capability.value,
            model=outcome.model,
            success=outcome.ok,
            request_summary=summary,
            latency_ms=outcome.latency_ms,
        )
        if outcome.ok:
            entry.prompt_tokens = outcome.prompt_tokens
            entry.completion_tokens = outcome.completion_tokens
            entry.total_tokens = outcome.total_tokens
            entry.cost_usd = outcome.cost_usd
        else:
            entry.error = outcome.message

        timeout = float(self.config.get_option("usage_timeout", 5.0))
        try:
            await asyncio.wait_for(self.ledger.record(entry), timeout)
        except Exception as e:
            logger.warning(f"Usage record for {outcome.provider} not written: {e!r}")

    async def health_check_all(self) -> dict[str, bool]:
        """Check health of every registered adapter with its configuration present."""
        results = {}
        for provider_id, adapter in self.registry.adapters.items():
            if self.registry.missing_config(provider_id, self.config):
                continue
            start = time.monotonic()
            results[provider_id] = await adapter.health_check()
            if self.ledger is not None:
                # System rows stay out of the retention cap
                entry = UsageRecord(
                    timestamp=self._clock(),
                    provider=provider_id,
                    feature="health_check",
                    capability="health",
                    success=results[provider_id],
                    error=None if results[provider_id] else "health check failed",
                    latency_ms=int((time.monotonic() - start) * 1000),
                    system=True,
                )
                try:
                    await asyncio.wait_for(
                        self.ledger.record(entry), float(self.config.get_option("usage_timeout", 5.0))
                    )
                except Exception as e:
                    logger.warning(f"Health record for {provider_id} not written: {e!r}")
        return results

    async def close_all(self) -> None:
        """Close all adapter connections."""
        for adapter in self.registry.adapters.values():
            await adapter.close()


def create_default_router(
    config: ConfigProvider,
    ledger: UsageLedger | None = None,
) -> CapabilityRouter:
    """Create a router with every shipped adapter registered."""
    from conduit.providers.claude import ClaudeAdapter
    from conduit.providers.gemini import GeminiAdapter
    from conduit.providers.litellm_adapter import LiteLLMAdapter
    from conduit.providers.openai_compat import DeepSeekAdapter, OpenAIAdapter
    from conduit.providers.pricing import PricingTable
    from conduit.providers.ratelimit import RateLimiter

    pricing = PricingTable.from_yaml(config.get_option("pricing_file"))
    limiter = RateLimiter(config.get_option("rate_limits") or {})

    registry = ProviderRegistry()
    for adapter_cls in (OpenAIAdapter, ClaudeAdapter, GeminiAdapter, DeepSeekAdapter, LiteLLMAdapter):
        registry.register_adapter(adapter_cls(config, pricing, limiter))

    return CapabilityRouter(registry, config, ledger)
