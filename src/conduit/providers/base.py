"""
Provider adapter interface.

Each vendor integration implements _invoke() and raises ProviderError
subclasses. invoke() turns every failure into a ProviderFailure value so the
router branches on ErrorKind instead of exception types.
"""

import asyncio
import base64
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias

import httpx

from conduit.core.config import ConfigProvider
from conduit.core.errors import (
    ErrorKind,
    PermanentProviderError,
    ProviderConfigurationError,
    ProviderError,
    TransientProviderError,
    UnsupportedFeatureError,
)
from conduit.core.logging import get_logger
from conduit.core.typing import MessageDict
from conduit.providers.pricing import PricingTable
from conduit.providers.ratelimit import RateLimiter

logger = get_logger("providers.base")


class Capability(Enum):
    """AI function categories a provider may satisfy."""

    TEXT = "text"
    CHAT = "chat"
    IMAGE_GENERATION = "image_generation"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    TTS = "tts"
    EMBEDDING = "embedding"
    CLASSIFICATION = "classification"
    IMAGE_ANALYSIS = "image_analysis"
    TEXT_ANALYSIS = "text_analysis"


# Capabilities answered through a chat-completion style call
TEXT_CAPABILITIES = frozenset({
    Capability.TEXT,
    Capability.CHAT,
    Capability.CLASSIFICATION,
    Capability.TEXT_ANALYSIS,
})

DEFAULT_LABELS = ["positive", "negative", "neutral"]
DEFAULT_ANALYSIS_INSTRUCTION = (
    "Analyze the following text. Summarize its main topics, tone and key points."
)


@dataclass
class InvokeOptions:
    """Per-call options for a capability request."""

    model: str | None = None
    api_key: str | None = None  # credential override
    timeout: float | None = None  # seconds
    feature: str | None = None  # usage tag
    temperature: float = 0.7
    max_tokens: int = 4096
    system_prompt: str | None = None
    params: dict[str, Any] = field(default_factory=dict)  # capability-specific


@dataclass
class ProviderResponse:
    """Normalized successful result from a provider."""

    content: Any
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0
    metadata: dict | None = None

    ok = True

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ProviderFailure:
    """Categorized failure returned (not raised) by an adapter."""

    provider: str
    kind: ErrorKind
    message: str
    status_code: int | None = None
    model: str | None = None
    latency_ms: int = 0

    ok = False


InvokeOutcome: TypeAlias = ProviderResponse | ProviderFailure


def error_for_status(status_code: int, message: str) -> ProviderError:
    """Map an HTTP status onto the provider error taxonomy."""
    if status_code in (408, 409, 425, 429) or status_code >= 500:
        return TransientProviderError(message, status_code=status_code)
    return PermanentProviderError(message, status_code=status_code)


def raise_for_status(response: httpx.Response, provider_id: str) -> None:
    """Raise a categorized ProviderError for non-2xx responses."""
    if response.is_success:
        return
    try:
        data = response.json()
    except ValueError:
        data = None
    text = None
    if isinstance(data, dict) and data.get("error"):
        detail = data["error"]
        text = detail.get("message") if isinstance(detail, dict) else str(detail)
    text = text or response.text[:200] or response.reason_phrase
    raise error_for_status(
        response.status_code, f"{provider_id} HTTP {response.status_code}: {text}"
    )


# Payload normalization


def prompt_text(payload: Any) -> str:
    """Extract a prompt string from a str or {"prompt"|"text"|"input": ...} payload."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for key in ("prompt", "text", "input"):
            if isinstance(payload.get(key), str):
                return payload[key]
    raise PermanentProviderError(f"Expected a text prompt, got {type(payload).__name__}")


def chat_messages(capability: Capability, payload: Any, options: InvokeOptions) -> list[MessageDict]:
    """Build role/content turns for any text-style capability.

    The system prompt from options, when set, becomes the first turn.
    """
    if capability == Capability.CHAT and isinstance(payload, list):
        messages = [dict(m) for m in payload]
        for msg in messages:
            if "role" not in msg or "content" not in msg:
                raise PermanentProviderError("Chat messages need 'role' and 'content'")
    elif capability == Capability.CLASSIFICATION:
        messages = [{"role": "user", "content": classification_prompt(payload, options)}]
    elif capability == Capability.TEXT_ANALYSIS:
        instruction = options.params.get("instruction", DEFAULT_ANALYSIS_INSTRUCTION)
        messages = [{"role": "user", "content": f"{instruction}\n\n{prompt_text(payload)}"}]
    else:
        messages = [{"role": "user", "content": prompt_text(payload)}]

    if options.system_prompt:
        messages.insert(0, {"role": "system", "content": options.system_prompt})
    return messages


def classification_labels(options: InvokeOptions) -> list[str]:
    return list(options.params.get("labels") or DEFAULT_LABELS)


def classification_prompt(payload: Any, options: InvokeOptions) -> str:
    labels = classification_labels(options)
    return (
        "Classify the following text into exactly one of these labels: "
        f"{', '.join(labels)}. Respond with the label only.\n\n"
        f"Text: {prompt_text(payload)}"
    )


def normalize_label(content: str, labels: list[str]) -> str:
    """Map a model's free-form answer onto one of the labels when possible."""
    answer = content.strip().strip(".").lower()
    for label in labels:
        if answer == label.lower():
            return label
    for label in labels:
        if label.lower() in answer:
            return label
    return content.strip()


def embedding_input(payload: Any) -> list[str]:
    if isinstance(payload, str):
        return [payload]
    if isinstance(payload, list) and all(isinstance(p, str) for p in payload):
        return payload
    if isinstance(payload, dict) and "input" in payload:
        return embedding_input(payload["input"])
    raise PermanentProviderError("Embedding input must be a string or list of strings")


def audio_input(payload: Any) -> tuple[bytes, str]:
    """Return (audio bytes, filename)."""
    if isinstance(payload, bytes):
        return payload, "audio.mp3"
    if isinstance(payload, dict) and isinstance(payload.get("audio"), bytes):
        return payload["audio"], payload.get("filename", "audio.mp3")
    raise PermanentProviderError("Transcription payload must be bytes or {'audio': bytes}")


@dataclass
class ImageInput:
    """Image reference for analysis: either a URL or base64 data."""

    prompt: str
    url: str | None = None
    data: str | None = None  # base64
    media_type: str = "image/jpeg"


def image_input(payload: Any) -> ImageInput:
    if not isinstance(payload, dict) or "image" not in payload:
        raise PermanentProviderError("Image analysis payload must be {'image': ..., 'prompt': ...}")
    prompt = payload.get("prompt") or "Describe this image."
    media_type = payload.get("media_type", "image/jpeg")
    image = payload["image"]
    if isinstance(image, bytes):
        return ImageInput(prompt, data=base64.b64encode(image).decode(), media_type=media_type)
    if isinstance(image, str) and image.startswith(("http://", "https://")):
        return ImageInput(prompt, url=image, media_type=media_type)
    if isinstance(image, str):
        return ImageInput(prompt, data=image, media_type=media_type)
    raise PermanentProviderError("Unsupported image reference")


def summarize_payload(capability: Capability, payload: Any, limit: int = 200) -> str:
    """Short human-readable request summary for the usage ledger."""
    if isinstance(payload, bytes):
        summary = f"<{len(payload)} bytes>"
    elif isinstance(payload, str):
        summary = payload
    elif isinstance(payload, list) and payload and isinstance(payload[-1], dict):
        summary = str(payload[-1].get("content", ""))
    elif isinstance(payload, dict):
        text = payload.get("prompt") or payload.get("text") or payload.get("input")
        summary = text if isinstance(text, str) else f"<{', '.join(sorted(payload))}>"
    else:
        summary = repr(payload)
    summary = f"[{capability.value}] {summary}"
    return summary[:limit] + "..." if len(summary) > limit else summary


class ProviderAdapter(ABC):
    """Abstract provider adapter."""

    provider_id: str
    capabilities: frozenset[Capability] = frozenset()
    default_models: dict[Capability, str] = {}

    def __init__(
        self,
        config: ConfigProvider,
        pricing: PricingTable | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.config = config
        self.pricing = pricing or PricingTable()
        self.rate_limiter = rate_limiter

    async def invoke(
        self,
        capability: Capability,
        payload: Any,
        options: InvokeOptions | None = None,
    ) -> InvokeOutcome:
        """Run one capability request against this provider.

        Never raises for provider-side problems; returns ProviderFailure instead.
        """
        options = options or InvokeOptions()
        model = self.resolve_model(capability, options)
        start = time.monotonic()
        try:
            if capability not in self.capabilities:
                raise UnsupportedFeatureError(
                    f"{self.provider_id} does not implement {capability.value}"
                )
            if self.rate_limiter:
                self.rate_limiter.acquire(self.provider_id)
            response = await self._invoke(capability, payload, options, model)
        except ProviderError as e:
            return self._failure(e.kind, str(e), start, model, e.status_code)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            return self._failure(ErrorKind.TRANSIENT, f"Timeout: {e or 'request timed out'}", start, model)
        except httpx.TransportError as e:
            return self._failure(ErrorKind.TRANSIENT, f"Connection error: {e}", start, model)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            return self._failure(
                ErrorKind.PERMANENT, f"Malformed response: {type(e).__name__}: {e}", start, model
            )
        except Exception as e:
            logger.error(f"{self.provider_id} raised unexpectedly: {e!r}", exc_info=True)
            return self._failure(
                ErrorKind.PERMANENT, f"Unexpected error: {type(e).__name__}: {e}", start, model
            )

        response.latency_ms = int((time.monotonic() - start) * 1000)
        return response

    def _failure(
        self,
        kind: ErrorKind,
        message: str,
        start: float,
        model: str | None,
        status_code: int | None = None,
    ) -> ProviderFailure:
        logger.debug(f"{self.provider_id} failure ({kind.value}): {message}")
        return ProviderFailure(
            provider=self.provider_id,
            kind=kind,
            message=message,
            status_code=status_code,
            model=model,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    @abstractmethod
    async def _invoke(
        self,
        capability: Capability,
        payload: Any,
        options: InvokeOptions,
        model: str,
    ) -> ProviderResponse:
        """Perform the vendor call. Raise ProviderError subclasses on failure."""
        ...

    def resolve_model(self, capability: Capability, options: InvokeOptions) -> str:
        """Model override, else capability default, else configured default."""
        if options.model:
            return options.model
        if capability in self.default_models:
            return self.default_models[capability]
        return self.config.get_option(f"{self.provider_id}_default_model", "") or ""

    def api_key(self, options: InvokeOptions) -> str:
        key = options.api_key or self.config.get_option(f"{self.provider_id}_api_key", "")
        if not key:
            raise ProviderConfigurationError(f"API key not configured for {self.provider_id}")
        return key

    def timeout(self, options: InvokeOptions) -> float:
        return options.timeout or float(self.config.get_option("provider_timeout", 60.0))

    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        return self.pricing.cost(self.provider_id, model, prompt_tokens, completion_tokens)

    async def health_check(self) -> bool:
        """Check if provider is reachable."""
        return True

    async def close(self) -> None:
        """Release network resources."""
        return None
