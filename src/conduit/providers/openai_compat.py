"""OpenAI-compatible HTTP adapters (OpenAI, DeepSeek)."""

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
    audio_input,
    chat_messages,
    classification_labels,
    embedding_input,
    image_input,
    normalize_label,
    prompt_text,
    raise_for_status,
)

logger = get_logger("providers.openai")


class OpenAICompatibleAdapter(ProviderAdapter):
    """Adapter for any API speaking the OpenAI REST dialect."""

    default_base_url: str = "https://api.openai.com/v1"

    def __init__(self, config, pricing=None, rate_limiter=None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config, pricing, rate_limiter)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self.config.get_option(f"{self.provider_id}_base_url") or self.default_base_url

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout(InvokeOptions()),
                transport=self._transport,
            )
        return self._client

    def _headers(self, options: InvokeOptions) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key(options)}"}

    async def _post(self, path: str, options: InvokeOptions, **kwargs: Any) -> httpx.Response:
        response = await self.client.post(
            path,
            headers=self._headers(options),
            timeout=self.timeout(options),
            **kwargs,
        )
        raise_for_status(response, self.provider_id)
        return response

    async def _invoke(
        self,
        capability: Capability,
        payload: Any,
        options: InvokeOptions,
        model: str,
    ) -> ProviderResponse:
        if capability in TEXT_CAPABILITIES:
            return await self._chat(capability, chat_messages(capability, payload, options), options, model)
        if capability == Capability.IMAGE_ANALYSIS:
            return await self._chat(capability, self._vision_messages(payload, options), options, model)
        if capability == Capability.EMBEDDING:
            return await self._embed(payload, options, model)
        if capability == Capability.IMAGE_GENERATION:
            return await self._generate_image(payload, options, model)
        if capability == Capability.AUDIO_TRANSCRIPTION:
            return await self._transcribe(payload, options, model)
        if capability == Capability.TTS:
            return await self._speak(payload, options, model)
        raise UnsupportedFeatureError(f"{self.provider_id} does not implement {capability.value}")

    def _vision_messages(self, payload: Any, options: InvokeOptions) -> list[dict]:
        image = image_input(payload)
        url = image.url or f"data:{image.media_type};base64,{image.data}"
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": image.prompt},
                {"type": "image_url", "image_url": {"url": url}},
            ],
        }]
        if options.system_prompt:
            messages.insert(0, {"role": "system", "content": options.system_prompt})
        return messages

    async def _chat(
        self,
        capability: Capability,
        messages: list[dict],
        options: InvokeOptions,
        model: str,
    ) -> ProviderResponse:
        body = {
            "model": model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        logger.debug(f"{self.provider_id} request: model={model}, messages={len(messages)}")

        data = (await self._post("/chat/completions", options, json=body)).json()
        if not data.get("choices"):
            raise PermanentProviderError(f"{self.provider_id} returned no choices")

        content = data["choices"][0]["message"].get("content") or ""
        if capability == Capability.CLASSIFICATION:
            content = normalize_label(content, classification_labels(options))

        usage = data.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)
        returned_model = data.get("model") or model
        cost = self.cost(returned_model, prompt_tokens, completion_tokens)

        logger.debug(f"{self.provider_id} usage: {prompt_tokens}→{completion_tokens} tok, ${cost:.4f}")
        return ProviderResponse(
            content=content,
            model=returned_model,
            provider=self.provider_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=cost,
            metadata={"id": data.get("id"), "finish_reason": data["choices"][0].get("finish_reason")},
        )

    async def _embed(self, payload: Any, options: InvokeOptions, model: str) -> ProviderResponse:
        inputs = embedding_input(payload)
        data = (await self._post("/embeddings", options, json={"model": model, "input": inputs})).json()

        vectors = [item["embedding"] for item in sorted(data["data"], key=lambda d: d.get("index", 0))]
        prompt_tokens = (data.get("usage") or {}).get("prompt_tokens", 0)
        returned_model = data.get("model") or model
        return ProviderResponse(
            content=vectors[0] if isinstance(payload, str) else vectors,
            model=returned_model,
            provider=self.provider_id,
            prompt_tokens=prompt_tokens,
            cost_usd=self.cost(returned_model, prompt_tokens, 0),
        )

    async def _generate_image(self, payload: Any, options: InvokeOptions, model: str) -> ProviderResponse:
        count = int(options.params.get("n", 1))
        body = {
            "model": model,
            "prompt": prompt_text(payload),
            "n": count,
            "size": options.params.get("size", "1024x1024"),
        }
        if "quality" in options.params:
            body["quality"] = options.params["quality"]

        data = (await self._post("/images/generations", options, json=body)).json()
        images = [item.get("url") or item.get("b64_json") for item in data["data"]]
        return ProviderResponse(
            content=images,
            model=model,
            provider=self.provider_id,
            cost_usd=self.cost(model, 0, 0) * len(images),
        )

    async def _transcribe(self, payload: Any, options: InvokeOptions, model: str) -> ProviderResponse:
        audio, filename = audio_input(payload)
        data = {"model": model}
        if "language" in options.params:
            data["language"] = options.params["language"]

        result = (
            await self._post("/audio/transcriptions", options, data=data, files={"file": (filename, audio)})
        ).json()
        return ProviderResponse(
            content=result["text"],
            model=model,
            provider=self.provider_id,
            cost_usd=self.cost(model, 0, 0),
        )

    async def _speak(self, payload: Any, options: InvokeOptions, model: str) -> ProviderResponse:
        body = {
            "model": model,
            "input": prompt_text(payload),
            "voice": options.params.get("voice", "alloy"),
            "response_format": options.params.get("format", "mp3"),
        }
        response = await self._post("/audio/speech", options, json=body)
        return ProviderResponse(
            content=response.content,
            model=model,
            provider=self.provider_id,
            cost_usd=self.cost(model, 0, 0),
            metadata={"content_type": response.headers.get("content-type")},
        )

    async def health_check(self) -> bool:
        """Check if the API is reachable with the configured key."""
        try:
            response = await self.client.get("/models", headers=self._headers(InvokeOptions()))
            return response.status_code == 200
        except Exception as e:
            logger.warning(f"{self.provider_id} health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI: every capability."""

    provider_id = "openai"
    capabilities = frozenset(Capability)
    default_base_url = "https://api.openai.com/v1"
    default_models = {
        Capability.EMBEDDING: "text-embedding-3-small",
        Capability.IMAGE_GENERATION: "dall-e-3",
        Capability.AUDIO_TRANSCRIPTION: "whisper-1",
        Capability.TTS: "tts-1",
    }


class DeepSeekAdapter(OpenAICompatibleAdapter):
    """DeepSeek: OpenAI-compatible chat completions only."""

    provider_id = "deepseek"
    capabilities = TEXT_CAPABILITIES
    default_base_url = "https://api.deepseek.com"
