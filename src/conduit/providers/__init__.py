"""
Providers module - AI vendor adapters behind a single interface.

Adapters:
- openai: OpenAI REST API (every capability)
- deepseek: DeepSeek, OpenAI-compatible chat
- anthropic: Anthropic Claude via the official SDK
- gemini: Google Gemini REST API
- litellm: any model string LiteLLM supports

Adapters return ProviderResponse or ProviderFailure; the router decides
what to try next.
"""

from conduit.providers.base import (
    Capability,
    InvokeOptions,
    InvokeOutcome,
    ProviderAdapter,
    ProviderFailure,
    ProviderResponse,
)
from conduit.providers.registry import PROVIDER_CATALOG, ProviderRegistry, ProviderSpec

__all__ = [
    "PROVIDER_CATALOG",
    "Capability",
    "InvokeOptions",
    "InvokeOutcome",
    "ProviderAdapter",
    "ProviderFailure",
    "ProviderRegistry",
    "ProviderResponse",
    "ProviderSpec",
]
