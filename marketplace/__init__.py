"""Known marketplaces and ``plugin@marketplace`` resolution."""

from marketplace.registry import KnownMarketplace, MarketplaceRegistry

__all__ = ["KnownMarketplace", "MarketplaceRegistry"]
