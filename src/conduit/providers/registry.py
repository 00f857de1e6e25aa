"""
Provider registry.

Static catalog of known providers (capabilities and required configuration)
plus the adapters registered at runtime.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from conduit.core.config import ConfigProvider
from conduit.core.logging import get_logger
from conduit.providers.base import (
    TEXT_CAPABILITIES,
    Capability,
    InvokeOptions,
    ProviderAdapter,
)

logger = get_logger("providers.registry")


@dataclass(frozen=True)
class ProviderSpec:
    """Provider metadata: what it can do and what it needs to run."""

    id: str
    name: str
    capabilities: frozenset[Capability]
    required_config: tuple[str, ...] = ()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


PROVIDER_CATALOG: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        id="openai",
        name="OpenAI",
        capabilities=frozenset(Capability),
        required_config=("openai_api_key",),
    ),
    "anthropic": ProviderSpec(
        id="anthropic",
        name="Anthropic Claude",
        capabilities=TEXT_CAPABILITIES | {Capability.IMAGE_ANALYSIS},
        required_config=("anthropic_api_key",),
    ),
    "gemini": ProviderSpec(
        id="gemini",
        name="Google Gemini",
        capabilities=TEXT_CAPABILITIES | {Capability.EMBEDDING, Capability.IMAGE_ANALYSIS},
        required_config=("gemini_api_key",),
    ),
    "deepseek": ProviderSpec(
        id="deepseek",
        name="DeepSeek",
        capabilities=TEXT_CAPABILITIES,
        required_config=("deepseek_api_key",),
    ),
    "litellm": ProviderSpec(
        id="litellm",
        name="LiteLLM",
        capabilities=TEXT_CAPABILITIES | {Capability.EMBEDDING},
        required_config=("litellm_default_model",),
    ),
}


class ProviderRegistry:
    """Provider specs keyed by id, with their adapters."""

    def __init__(self, specs: Iterable[ProviderSpec] | None = None):
        self._specs: dict[str, ProviderSpec] = {}
        self._adapters: dict[str, ProviderAdapter] = {}
        for spec in PROVIDER_CATALOG.values() if specs is None else specs:
            self.add_spec(spec)

    def add_spec(self, spec: ProviderSpec) -> None:
        """Add or replace a provider spec."""
        self._specs[spec.id] = spec

    def register_adapter(self, adapter: ProviderAdapter, spec: ProviderSpec | None = None) -> None:
        """Register an adapter, adding its spec when it is not catalogued yet."""
        provider_id = adapter.provider_id
        if spec is not None:
            self.add_spec(spec)
        elif provider_id not in self._specs:
            self.add_spec(ProviderSpec(provider_id, provider_id, frozenset(adapter.capabilities)))
        if provider_id in self._adapters:
            logger.warning(f"Adapter {provider_id} already registered, overwriting")
        self._adapters[provider_id] = adapter
        logger.debug(f"Registered adapter: {provider_id}")

    def get(self, provider_id: str) -> ProviderAdapter | None:
        """Get the adapter for a provider id."""
        return self._adapters.get(provider_id)

    def spec(self, provider_id: str) -> ProviderSpec | None:
        return self._specs.get(provider_id)

    def supports(self, provider_id: str, capability: Capability) -> bool:
        spec = self._specs.get(provider_id)
        return spec is not None and spec.supports(capability)

    def providers_for(self, capability: Capability) -> list[str]:
        """Ids of catalogued providers declaring a capability, in catalog order."""
        return [pid for pid, spec in self._specs.items() if spec.supports(capability)]

    @property
    def adapters(self) -> dict[str, ProviderAdapter]:
        return dict(self._adapters)

    @property
    def specs(self) -> list[ProviderSpec]:
        return list(self._specs.values())

    def missing_config(
        self,
        provider_id: str,
        config: ConfigProvider,
        options: InvokeOptions | None = None,
    ) -> list[str]:
        """Required option keys that are unset for a provider.

        A credential override in options satisfies every *_api_key requirement.
        """
        spec = self._specs.get(provider_id)
        if spec is None:
            return []
        override = options.api_key if options else None
        missing = []
        for key in spec.required_config:
            if override and key.endswith("_api_key"):
                continue
            if not config.get_option(key):
                missing.append(key)
        return missing
