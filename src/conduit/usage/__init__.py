"""Usage module - append-only ledger of provider attempts."""

from conduit.usage.ledger import UsageLedger
from conduit.usage.types import ProviderUsageSummary, UsageFilter, UsageRecord

__all__ = ["ProviderUsageSummary", "UsageFilter", "UsageLedger", "UsageRecord"]
