"""
Provider pricing table.

Per-provider, per-model rates loaded from YAML so prices can be swapped
without touching adapter code.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from conduit.core.logging import get_logger

logger = get_logger("providers.pricing")

DEFAULT_PRICING_PATH = Path(__file__).parent.parent / "configs" / "pricing.yaml"


@dataclass(frozen=True)
class ModelPricing:
    """Rates for one model."""

    input_per_1m: float = 0.0  # USD per 1M prompt tokens
    output_per_1m: float = 0.0  # USD per 1M completion tokens
    per_request: float = 0.0  # flat USD per call

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (
            (prompt_tokens / 1_000_000) * self.input_per_1m
            + (completion_tokens / 1_000_000) * self.output_per_1m
            + self.per_request
        )


class PricingTable:
    """Lookup of ModelPricing by provider id and model id."""

    def __init__(self, prices: dict[str, dict[str, ModelPricing]] | None = None):
        self._prices = prices or {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricingTable":
        prices: dict[str, dict[str, ModelPricing]] = {}
        for provider_id, models in (data.get("providers") or {}).items():
            prices[provider_id] = {
                model_id: ModelPricing(
                    input_per_1m=float(rates.get("input_per_1m", 0.0)),
                    output_per_1m=float(rates.get("output_per_1m", 0.0)),
                    per_request=float(rates.get("per_request", 0.0)),
                )
                for model_id, rates in (models or {}).items()
            }
        return cls(prices)

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "PricingTable":
        """Load table from YAML (bundled table when path is None)."""
        path = Path(path) if path else DEFAULT_PRICING_PATH
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        table = cls.from_dict(data)
        logger.debug(f"Loaded pricing for {len(table._prices)} providers from {path}")
        return table

    def get(self, provider_id: str, model: str | None) -> ModelPricing | None:
        """Get pricing for a model.

        Dated model ids returned by vendors (gpt-4o-mini-2024-07-18) fall back
        to the longest configured prefix.
        """
        if not model:
            return None
        models = self._prices.get(provider_id, {})
        if model in models:
            return models[model]
        prefixes = [m for m in models if model.startswith(m)]
        if prefixes:
            return models[max(prefixes, key=len)]
        return None

    def cost(
        self,
        provider_id: str,
        model: str | None,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
    ) -> float:
        """Calculate cost in USD; unknown models cost 0.0."""
        pricing = self.get(provider_id, model)
        if pricing is None:
            logger.warning(f"Unknown model {provider_id}/{model}, cost calculation unavailable")
            return 0.0
        return pricing.cost(prompt_tokens, completion_tokens)

    def providers(self) -> list[str]:
        return list(self._prices.keys())
