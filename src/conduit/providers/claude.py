"""
Anthropic Claude adapter.

Uses the official anthropic SDK with SDK-level retries disabled; retrying is
the router's job (fallback) and the task queue's job (backoff).
"""

from typing import Any

import anthropic

from conduit.core.errors import (
    PermanentProviderError,
    TransientProviderError,
    UnsupportedFeatureError,
)
from conduit.core.logging import get_logger
from conduit.providers.base import (
    TEXT_CAPABILITIES,
    Capability,
    InvokeOptions,
    ProviderAdapter,
    ProviderResponse,
    chat_messages,
    classification_labels,
    error_for_status,
    image_input,
    normalize_label,
)

logger = get_logger("providers.claude")


class ClaudeAdapter(ProviderAdapter):
    """Anthropic Messages API adapter."""

    provider_id = "anthropic"
    capabilities = TEXT_CAPABILITIES | {Capability.IMAGE_ANALYSIS}

    def __init__(self, config, pricing=None, rate_limiter=None, client: anthropic.AsyncAnthropic | None = None):
        super().__init__(config, pricing, rate_limiter)
        self._injected = client
        self._clients: dict[str, anthropic.AsyncAnthropic] = {}

    def client_for(self, options: InvokeOptions) -> anthropic.AsyncAnthropic:
        if self._injected is not None:
            return self._injected
        api_key = self.api_key(options)
        if api_key not in self._clients:
            self._clients[api_key] = anthropic.AsyncAnthropic(
                api_key=api_key,
                max_retries=0,
                timeout=self.timeout(options),
            )
        return self._clients[api_key]

    async def _invoke(
        self,
        capability: Capability,
        payload: Any,
        options: InvokeOptions,
        model: str,
    ) -> ProviderResponse:
        if capability in TEXT_CAPABILITIES:
            messages = chat_messages(capability, payload, options)
        elif capability == Capability.IMAGE_ANALYSIS:
            messages = self._vision_messages(payload, options)
        else:
            raise UnsupportedFeatureError(f"anthropic does not implement {capability.value}")

        # System turns go in the dedicated parameter
        system_prompt = None
        api_messages = []
        for msg in messages:
            if msg["role"] == "system":
                system_prompt = msg["content"]
            else:
                api_messages.append(msg)

        params: dict[str, Any] = {
            "model": model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": api_messages,
            "timeout": self.timeout(options),
        }
        if system_prompt:
            params["system"] = system_prompt

        logger.debug(f"Claude request: model={model}, max_tokens={options.max_tokens}")
        client = self.client_for(options)
        try:
            response = await client.messages.create(**params)
        except (anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError) as e:
            # APITimeoutError is an APIConnectionError
            logger.warning(f"Claude transient error: {e}")
            raise TransientProviderError(f"anthropic: {e}", status_code=getattr(e, "status_code", None)) from e
        except anthropic.APIStatusError as e:
            raise error_for_status(e.status_code, f"anthropic HTTP {e.status_code}: {e.message}") from e
        except anthropic.APIError as e:
            raise PermanentProviderError(f"anthropic: {e}") from e

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if capability == Capability.CLASSIFICATION:
            content = normalize_label(content, classification_labels(options))

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        returned_model = response.model or model
        cost = self.cost(returned_model, input_tokens, output_tokens)
        logger.debug(f"Claude usage: {input_tokens} in, {output_tokens} out, ${cost:.4f}")

        return ProviderResponse(
            content=content,
            model=returned_model,
            provider=self.provider_id,
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            cost_usd=cost,
            metadata={"id": response.id, "stop_reason": response.stop_reason},
        )

    def _vision_messages(self, payload: Any, options: InvokeOptions) -> list[dict]:
        image = image_input(payload)
        if image.url:
            source = {"type": "url", "url": image.url}
        else:
            source = {"type": "base64", "media_type": image.media_type, "data": image.data}
        messages = [{
            "role": "user",
            "content": [
                {"type": "image", "source": source},
                {"type": "text", "text": image.prompt},
            ],
        }]
        if options.system_prompt:
            messages.insert(0, {"role": "system", "content": options.system_prompt})
        return messages

    async def health_check(self) -> bool:
        """Check if Claude API is accessible."""
        try:
            await self.client_for(InvokeOptions()).models.list(limit=1)
            return True
        except Exception as e:
            logger.warning(f"Claude health check failed: {e}")
            return False

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
