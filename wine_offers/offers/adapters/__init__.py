"""
Adapter Registry Module
=======================

Central registry for site-specific offer adapters.
Maps a PriceSource.adapter_type tag to the adapter class that handles it.
"""

from __future__ import annotations

from typing import Type

from wine_offers.offers.adapters.base import NormalizedOffer, SourceAdapter
from wine_offers.offers.adapters.shopify import ShopifyAdapter
from wine_offers.offers.adapters.woocommerce import WooCommerceAdapter
from wine_offers.offers.fetcher import PoliteFetcher
from wine_offers.offers.settings import OffersConfig

# Registry mapping adapter_type tags to their classes
ADAPTER_REGISTRY: dict[str, Type[SourceAdapter]] = {
    "shopify": ShopifyAdapter,
    "woocommerce": WooCommerceAdapter,
}


def get_adapter(
    adapter_type: str,
    fetcher: PoliteFetcher | None = None,
    config: OffersConfig | None = None,
) -> SourceAdapter | None:
    """
    Get an adapter instance by type tag.

    Args:
        adapter_type: Tag stored on the price source (e.g., "shopify")
        fetcher: Optional fetch client
        config: Optional pipeline settings

    Returns:
        Adapter instance, or None if the tag is not registered
    """
    adapter_class = ADAPTER_REGISTRY.get((adapter_type or "").strip().lower())
    if adapter_class is None:
        return None
    return adapter_class(fetcher=fetcher, config=config)


def register_adapter(name: str, adapter_class: Type[SourceAdapter]) -> None:
    """
    Register a new adapter type.

    Args:
        name: Tag to register the adapter under
        adapter_class: Adapter class (must inherit from SourceAdapter)
    """
    if not issubclass(adapter_class, SourceAdapter):
        raise TypeError(f"{adapter_class} must inherit from SourceAdapter")
    ADAPTER_REGISTRY[name] = adapter_class


def list_adapters() -> list[str]:
    """List all registered adapter tags."""
    return list(ADAPTER_REGISTRY.keys())


def get_adapter_info(adapter_type: str) -> dict[str, str] | None:
    """
    Get information about an adapter type.

    Returns:
        Dict with adapter info, or None if not found
    """
    adapter_class = ADAPTER_REGISTRY.get(adapter_type)
    if adapter_class is None:
        return None

    return {
        "name": adapter_class.ADAPTER_NAME,
        "version": adapter_class.ADAPTER_VERSION,
        "class": adapter_class.__name__,
    }


def reset_adapter_caches(
    fetcher: PoliteFetcher | None = None,
    config: OffersConfig | None = None,
) -> None:
    """Clear the caches of every registered adapter."""
    for adapter_class in ADAPTER_REGISTRY.values():
        adapter_class(fetcher=fetcher, config=config).reset_caches()


__all__ = [
    # Registry functions
    "get_adapter",
    "register_adapter",
    "list_adapters",
    "get_adapter_info",
    "reset_adapter_caches",
    "ADAPTER_REGISTRY",
    # Base classes
    "SourceAdapter",
    "NormalizedOffer",
    # Concrete adapters
    "ShopifyAdapter",
    "WooCommerceAdapter",
]
