"""Routing policy: which providers to try for a capability, in what order."""

from dataclasses import dataclass

from conduit.core.config import ConfigProvider
from conduit.providers.base import Capability


@dataclass(frozen=True)
class RoutingPolicy:
    """Preferred provider plus ordered fallbacks for one capability.

    Duplicate fallbacks, and the preferred provider if it reappears in the
    fallback list, are dropped keeping first occurrence order.
    """

    capability: Capability
    preferred: str | None = None
    fallback: tuple[str, ...] = ()

    def __post_init__(self):
        seen = {self.preferred} if self.preferred else set()
        ordered = []
        for provider_id in self.fallback:
            if provider_id and provider_id not in seen:
                seen.add(provider_id)
                ordered.append(provider_id)
        object.__setattr__(self, "fallback", tuple(ordered))

    @property
    def order(self) -> list[str]:
        """Preferred first, then fallbacks."""
        head = [self.preferred] if self.preferred else []
        return head + list(self.fallback)


def policy_from_config(config: ConfigProvider, capability: Capability) -> RoutingPolicy:
    """Build the policy for a capability from preferred/fallback options."""
    preferred = (config.get_option("preferred_providers") or {}).get(capability.value) or None
    fallbacks = config.get_option("fallback_providers") or {}
    if capability.value in fallbacks:
        fallback = fallbacks[capability.value]
    else:
        fallback = config.get_option("default_fallback") or []
    return RoutingPolicy(capability=capability, preferred=preferred, fallback=tuple(fallback))
