"""Google Gemini adapter (generativelanguage REST API)."""

from typing import Any

import httpx

from conduit.core.errors import PermanentProviderError, UnsupportedFeatureError
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
    image_input,
    normalize_label,
    raise_for_status,
)

logger = get_logger("providers.gemini")

GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiAdapter(ProviderAdapter):
    """Gemini generateContent / embedContent adapter."""

    provider_id = "gemini"
    capabilities = TEXT_CAPABILITIES | {Capability.EMBEDDING, Capability.IMAGE_ANALYSIS}
    default_models = {Capability.EMBEDDING: "text-embedding-004"}

    def __init__(self, config, pricing=None, rate_limiter=None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config, pricing, rate_limiter)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.get_option("gemini_base_url") or GEMINI_BASE,
                timeout=self.timeout(InvokeOptions()),
                transport=self._transport,
            )
        return self._client

    async def _post(self, path: str, options: InvokeOptions, body: dict) -> dict:
        response = await self.client.post(
            path,
            json=body,
            headers={"x-goog-api-key": self.api_key(options)},
            timeout=self.timeout(options),
        )
        raise_for_status(response, self.provider_id)
        return response.json()

    async def _invoke(
        self,
        capability: Capability,
        payload: Any,
        options: InvokeOptions,
        model: str,
    ) -> ProviderResponse:
        if capability == Capability.EMBEDDING:
            return await self._embed(payload, options, model)
        if capability in TEXT_CAPABILITIES:
            contents, system_prompt = self._contents(chat_messages(capability, payload, options))
        elif capability == Capability.IMAGE_ANALYSIS:
            contents, system_prompt = self._vision_contents(payload), options.system_prompt
        else:
            raise UnsupportedFeatureError(f"gemini does not implement {capability.value}")

        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        logger.debug(f"Gemini request: model={model}, turns={len(contents)}")
        data = await self._post(f"/models/{model}:generateContent", options, body)

        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise PermanentProviderError(f"gemini returned no content: {reason}")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        content = "".join(p.get("text", "") for p in parts)
        if capability == Capability.CLASSIFICATION:
            content = normalize_label(content, classification_labels(options))

        usage = data.get("usageMetadata") or {}
        prompt_tokens = usage.get("promptTokenCount", 0)
        completion_tokens = usage.get("candidatesTokenCount", 0)
        returned_model = data.get("modelVersion") or model

        return ProviderResponse(
            content=content,
            model=returned_model,
            provider=self.provider_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=self.cost(returned_model, prompt_tokens, completion_tokens),
            metadata={"finish_reason": candidates[0].get("finishReason")},
        )

    @staticmethod
    def _contents(messages: list[dict]) -> tuple[list[dict], str | None]:
        """Convert role/content turns to Gemini contents plus system instruction."""
        system_prompt = None
        contents = []
        for msg in messages:
            if msg["role"] == "system":
                system_prompt = msg["content"]
                continue
            role = "model" if msg["role"] == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": str(msg["content"])}]})
        return contents, system_prompt

    @staticmethod
    def _vision_contents(payload: Any) -> list[dict]:
        image = image_input(payload)
        if image.url:
            raise PermanentProviderError("gemini image analysis needs inline image data, not a URL")
        return [{
            "role": "user",
            "parts": [
                {"text": image.prompt},
                {"inline_data": {"mime_type": image.media_type, "data": image.data}},
            ],
        }]

    async def _embed(self, payload: Any, options: InvokeOptions, model: str) -> ProviderResponse:
        inputs = embedding_input(payload)
        if isinstance(payload, str):
            data = await self._post(
                f"/models/{model}:embedContent",
                options,
                {"content": {"parts": [{"text": inputs[0]}]}},
            )
            content: Any = data["embedding"]["values"]
        else:
            data = await self._post(
                f"/models/{model}:batchEmbedContents",
                options,
                {
                    "requests": [
                        {"model": f"models/{model}", "content": {"parts": [{"text": text}]}}
                        for text in inputs
                    ]
                },
            )
            content = [e["values"] for e in data["embeddings"]]

        return ProviderResponse(
            content=content,
            model=model,
            provider=self.provider_id,
            cost_usd=self.cost(model, 0, 0),
        )

    async def health_check(self) -> bool:
        try:
            response = await self.client.get(
                "/models", headers={"x-goog-api-key": self.api_key(InvokeOptions())}
            )
            return response.status_code == 200
        except Exception as e:
            logger.warning(f"Gemini health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
