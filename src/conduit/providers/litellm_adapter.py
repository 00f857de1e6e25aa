"""LiteLLM adapter - any model string LiteLLM understands, behind one provider id."""

from typing import Any

import litellm

from conduit.core.errors import (
    ProviderConfigurationError,
    TransientProviderError,
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
    embedding_input,
    error_for_status,
    normalize_label,
)

logger = get_logger("providers.litellm")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True

_TRANSIENT_ERRORS = (
    litellm.Timeout,
    litellm.RateLimitError,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


def _field(item: Any, name: str) -> Any:
    """Read a field from a LiteLLM response object or plain dict."""
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


class LiteLLMAdapter(ProviderAdapter):
    """Routes through litellm.acompletion / litellm.aembedding."""

    provider_id = "litellm"
    capabilities = TEXT_CAPABILITIES | {Capability.EMBEDDING}

    def resolve_model(self, capability: Capability, options: InvokeOptions) -> str:
        if options.model:
            return options.model
        if capability == Capability.EMBEDDING:
            return self.config.get_option("litellm_embedding_model", "") or ""
        return self.config.get_option("litellm_default_model", "") or ""

    def _credentials(self, options: InvokeOptions) -> dict[str, Any]:
        params: dict[str, Any] = {"timeout": self.timeout(options)}
        if options.api_key:
            params["api_key"] = options.api_key
        base_url = self.config.get_option("litellm_api_base")
        if base_url:
            params["api_base"] = base_url
        return params

    async def _invoke(
        self,
        capability: Capability,
        payload: Any,
        options: InvokeOptions,
        model: str,
    ) -> ProviderResponse:
        if not model:
            raise ProviderConfigurationError("No LiteLLM model configured")

        try:
            if capability == Capability.EMBEDDING:
                return await self._embed(payload, options, model)
            return await self._complete(capability, payload, options, model)
        except _TRANSIENT_ERRORS as e:
            logger.warning(f"LiteLLM transient error for {model}: {e}")
            raise TransientProviderError(f"litellm: {e}", status_code=getattr(e, "status_code", None)) from e
        except litellm.APIError as e:
            raise error_for_status(getattr(e, "status_code", 400) or 400, f"litellm: {e}") from e

    async def _complete(
        self,
        capability: Capability,
        payload: Any,
        options: InvokeOptions,
        model: str,
    ) -> ProviderResponse:
        messages = chat_messages(capability, payload, options)
        logger.debug(f"LiteLLM request: model={model}, messages={len(messages)}")

        response = await litellm.acompletion(
            model=model,
            messages=messages,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            **self._credentials(options),
        )

        content = response.choices[0].message.content or ""
        if capability == Capability.CLASSIFICATION:
            content = normalize_label(content, classification_labels(options))

        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        returned_model = response.model or model

        return ProviderResponse(
            content=content,
            model=returned_model,
            provider=self.provider_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=self.cost(returned_model, prompt_tokens, completion_tokens),
        )

    async def _embed(self, payload: Any, options: InvokeOptions, model: str) -> ProviderResponse:
        response = await litellm.aembedding(
            model=model,
            input=embedding_input(payload),
            **self._credentials(options),
        )
        vectors = [_field(item, "embedding") for item in response.data]
        usage = getattr(response, "usage", None)
        prompt_tokens = usage.prompt_tokens if usage else 0

        return ProviderResponse(
            content=vectors[0] if isinstance(payload, str) else vectors,
            model=model,
            provider=self.provider_id,
            prompt_tokens=prompt_tokens,
            cost_usd=self.cost(model, prompt_tokens, 0),
        )
