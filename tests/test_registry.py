"""Tests for provider registry."""

from conftest import FakeAdapter

from conduit.core.config import DictConfigProvider
from conduit.providers.base import TEXT_CAPABILITIES, Capability, InvokeOptions
from conduit.providers.registry import PROVIDER_CATALOG, ProviderRegistry, ProviderSpec


def test_catalog_capabilities():
    """Shipped catalog matches the adapters' capability sets."""
    registry = ProviderRegistry()
    assert registry.supports("openai", Capability.TTS)
    assert registry.supports("anthropic", Capability.IMAGE_ANALYSIS)
    assert not registry.supports("anthropic", Capability.EMBEDDING)
    assert registry.supports("gemini", Capability.EMBEDDING)
    assert not registry.supports("deepseek", Capability.IMAGE_GENERATION)
    assert not registry.supports("unknown", Capability.TEXT)


def test_providers_for_capability():
    registry = ProviderRegistry()
    assert registry.providers_for(Capability.TTS) == ["openai"]
    assert set(registry.providers_for(Capability.CHAT)) == set(PROVIDER_CATALOG)


def test_register_adapter():
    registry = ProviderRegistry(specs=[])
    adapter = FakeAdapter("custom")

    registry.register_adapter(adapter)

    assert registry.get("custom") is adapter
    assert registry.spec("custom").capabilities == TEXT_CAPABILITIES
    assert registry.get("missing") is None


def test_missing_config():
    registry = ProviderRegistry()
    config = DictConfigProvider({"openai_api_key": "sk-1"})

    assert registry.missing_config("openai", config) == []
    assert registry.missing_config("anthropic", config) == ["anthropic_api_key"]
    assert registry.missing_config("litellm", config) == ["litellm_default_model"]


def test_api_key_override_satisfies_key_requirements():
    registry = ProviderRegistry()
    config = DictConfigProvider()
    override = InvokeOptions(api_key="sk-override")

    assert registry.missing_config("gemini", config, override) == []
    # Non-credential requirements still apply
    assert registry.missing_config("litellm", config, override) == ["litellm_default_model"]


def test_spec_supports():
    spec = ProviderSpec("x", "X", frozenset({Capability.TEXT}))
    assert spec.supports(Capability.TEXT)
    assert not spec.supports(Capability.TTS)
