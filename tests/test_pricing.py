"""Tests for pricing table and rate limiter."""

from pathlib import Path

import pytest

from conduit.core.errors import TransientProviderError
from conduit.providers.pricing import PricingTable
from conduit.providers.ratelimit import RateLimiter


@pytest.fixture
def pricing() -> PricingTable:
    return PricingTable.from_yaml()


def test_bundled_table_loads(pricing: PricingTable):
    assert set(pricing.providers()) >= {"openai", "anthropic", "gemini", "deepseek"}


def test_token_cost(pricing: PricingTable):
    """Cost uses per-1M input and output rates."""
    cost = pricing.cost("anthropic", "claude-sonnet-4-20250514", 1_000_000, 100_000)
    assert cost == pytest.approx(3.0 + 1.5)


def test_dated_model_uses_prefix(pricing: PricingTable):
    """Vendor-returned dated ids match the longest configured prefix."""
    rates = pricing.get("openai", "gpt-4o-mini-2024-07-18")
    assert rates is not None
    assert rates.input_per_1m == 0.15


def test_per_request_cost(pricing: PricingTable):
    assert pricing.cost("openai", "dall-e-3") == pytest.approx(0.04)


def test_unknown_model_costs_nothing(pricing: PricingTable):
    assert pricing.cost("openai", "mystery-model", 1000, 1000) == 0.0
    assert pricing.cost("nobody", "gpt-4o", 1000, 1000) == 0.0


def test_custom_table(tmp_path: Path):
    path = tmp_path / "prices.yaml"
    path.write_text(
        "providers:\n"
        "  local:\n"
        "    tiny:\n"
        "      input_per_1m: 1.0\n"
        "      output_per_1m: 2.0\n"
    )
    table = PricingTable.from_yaml(path)
    assert table.providers() == ["local"]
    assert table.cost("local", "tiny", 500_000, 500_000) == pytest.approx(1.5)


class ManualTime:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_rate_limiter_window():
    """Requests beyond the limit fail until the window resets."""
    time = ManualTime()
    limiter = RateLimiter({"openai": 2}, window_seconds=60, clock=time)

    limiter.acquire("openai")
    limiter.acquire("openai")
    assert limiter.remaining("openai") == 0
    with pytest.raises(TransientProviderError) as exc_info:
        limiter.acquire("openai")
    assert exc_info.value.status_code == 429

    time.now = 61
    assert limiter.remaining("openai") == 2
    limiter.acquire("openai")


def test_rate_limiter_unlimited_provider():
    limiter = RateLimiter({"openai": 1})
    for _ in range(10):
        limiter.acquire("anthropic")
    assert limiter.remaining("anthropic") is None
    assert limiter.limit_for("openai") == 1
