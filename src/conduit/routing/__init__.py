"""Routing module - capability routing with provider fallback."""

from conduit.routing.policy import RoutingPolicy, policy_from_config
from conduit.routing.router import CapabilityRouter, DispatchResult, create_default_router

__all__ = [
    "CapabilityRouter",
    "DispatchResult",
    "RoutingPolicy",
    "create_default_router",
    "policy_from_config",
]
