"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: CONDUIT_

Dict and list fields are read from the environment as JSON, e.g.
CONDUIT_FALLBACK_PROVIDERS='{"chat": ["anthropic", "gemini"]}'.
"""

import os
import socket
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Provider credentials and endpoints
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    gemini_api_key: str = Field(default="", description="Google Gemini API key")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta"
    )
    deepseek_api_key: str = Field(default="", description="DeepSeek API key")
    deepseek_base_url: str = Field(default="https://api.deepseek.com")
    litellm_default_model: str = Field(
        default="", description="LiteLLM model string, enables the litellm provider"
    )
    litellm_embedding_model: str = Field(default="text-embedding-3-small")
    litellm_api_base: str = Field(default="", description="Optional LiteLLM proxy URL")

    # Default models per provider (used when no model override is given)
    openai_default_model: str = Field(default="gpt-4o-mini")
    anthropic_default_model: str = Field(default="claude-sonnet-4-20250514")
    gemini_default_model: str = Field(default="gemini-1.5-flash")
    deepseek_default_model: str = Field(default="deepseek-chat")

    # Routing
    preferred_providers: dict[str, str] = Field(
        default_factory=dict, description="Capability -> preferred provider id"
    )
    fallback_providers: dict[str, list[str]] = Field(
        default_factory=dict, description="Capability -> ordered fallback ids"
    )
    default_fallback: list[str] = Field(
        default_factory=lambda: ["openai", "anthropic", "gemini", "deepseek", "litellm"],
        description="Fallback order for capabilities without an explicit list",
    )
    provider_timeout: float = Field(default=60.0, description="Per-call timeout (s)")
    rate_limits: dict[str, int] = Field(
        default_factory=lambda: {"openai": 60, "gemini": 100, "deepseek": 50},
        description="Requests per minute per provider",
    )
    pricing_file: Path | None = Field(
        default=None, description="Pricing YAML overriding the bundled table"
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="conduit.db", description="SQLite database name")
    db_timeout: float = Field(default=10.0, description="SQLite busy timeout (s)")

    # Usage ledger
    usage_max_records: int = Field(default=10_000, ge=1)
    usage_timeout: float = Field(default=5.0, description="Usage write timeout (s)")

    # Task queue
    queue_batch_size: int = Field(default=50, ge=1, description="Tasks claimed per tick")
    queue_max_attempts: int = Field(default=3, ge=1)
    queue_retry_delay: float = Field(default=300.0, gt=0, description="Backoff base (s)")
    queue_backoff: str = Field(default="fixed", description="'fixed' or 'exponential'")
    queue_backoff_max: float = Field(default=3600.0, gt=0)
    queue_interval: float = Field(default=60.0, gt=0, description="Worker tick period (s)")
    queue_parallelism: int = Field(default=1, ge=1)
    queue_stuck_after: float = Field(default=3600.0, gt=0)
    handler_timeout: float = Field(default=300.0, gt=0)
    worker_id: str = Field(default_factory=_default_worker_id)

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()


class ConfigProvider(ABC):
    """Read-only source of configuration options."""

    @abstractmethod
    def get_option(self, key: str, default: Any = None) -> Any:
        """Return the value for key, or default when unset."""
        ...


class SettingsConfigProvider(ConfigProvider):
    """ConfigProvider backed by Settings, with optional per-key overrides."""

    def __init__(
        self,
        settings: Settings | None = None,
        overrides: Mapping[str, Any] | None = None,
    ):
        self.settings = settings or get_settings()
        self._overrides = dict(overrides or {})

    def get_option(self, key: str, default: Any = None) -> Any:
        if key in self._overrides:
            return self._overrides[key]
        value = getattr(self.settings, key, None)
        return default if value is None else value


class DictConfigProvider(ConfigProvider):
    """ConfigProvider over a plain mapping."""

    def __init__(self, options: Mapping[str, Any] | None = None):
        self._options = dict(options or {})

    def get_option(self, key: str, default: Any = None) -> Any:
        return self._options.get(key, default)
