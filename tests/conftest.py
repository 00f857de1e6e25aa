"""Shared fixtures: fake provider adapter, controllable clock, temporary databases."""

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from conduit.core.config import DictConfigProvider
from conduit.providers.base import (
    TEXT_CAPABILITIES,
    Capability,
    InvokeOptions,
    ProviderAdapter,
    ProviderResponse,
)
from conduit.providers.registry import ProviderRegistry, ProviderSpec
from conduit.routing.router import CapabilityRouter
from conduit.storage.database import Database
from conduit.tasks.store import TaskStore
from conduit.usage.ledger import UsageLedger


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeAdapter(ProviderAdapter):
    """Adapter replaying scripted results.

    Each script item is returned as content, or raised if it is an exception.
    The last item repeats once the script runs out.
    """

    def __init__(
        self,
        provider_id: str,
        script: Iterable[Any] = ("ok",),
        capabilities: Iterable[Capability] = TEXT_CAPABILITIES,
    ):
        super().__init__(DictConfigProvider())
        self.provider_id = provider_id
        self.capabilities = frozenset(capabilities)
        self.script = list(script)
        self.calls: list[tuple[Capability, Any, InvokeOptions, str]] = []

    async def _invoke(self, capability, payload, options, model) -> ProviderResponse:
        self.calls.append((capability, payload, options, model))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return ProviderResponse(
            content=item,
            model=model or f"{self.provider_id}-model",
            provider=self.provider_id,
            prompt_tokens=10,
            completion_tokens=5,
            cost_usd=0.001,
        )


def build_router(
    adapters: list[FakeAdapter],
    options: dict[str, Any] | None = None,
    ledger: UsageLedger | None = None,
    clock=None,
) -> CapabilityRouter:
    """Router over fake adapters; each needs '<id>_api_key' unless options drop it."""
    registry = ProviderRegistry(specs=[])
    config_options = {f"{a.provider_id}_api_key": "test-key" for a in adapters}
    config_options.update(options or {})
    for adapter in adapters:
        registry.register_adapter(
            adapter,
            ProviderSpec(
                id=adapter.provider_id,
                name=adapter.provider_id.title(),
                capabilities=adapter.capabilities,
                required_config=(f"{adapter.provider_id}_api_key",),
            ),
        )
    kwargs = {"clock": clock} if clock else {}
    return CapabilityRouter(registry, DictConfigProvider(config_options), ledger, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db(tmp_path: Path):
    """Temporary SQLite database."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def ledger(db: Database) -> UsageLedger:
    return UsageLedger(db, max_records=100)


@pytest.fixture
def store(db: Database, clock: FakeClock) -> TaskStore:
    return TaskStore(db, clock=clock)
