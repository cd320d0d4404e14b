"""
Server-side response cache.

TTL cache in front of read endpoints with coarse, per resource type
invalidation on writes.
"""

from .middleware import (
    RESPONSE_CACHE_KEY,
    response_cache_middleware,
    routes_from_settings,
    setup_response_cache,
    warm_published_listings,
)
from .response_cache import CacheEntry, CacheKey, ResponseCache, make_key

__all__ = [
    "CacheEntry",
    "CacheKey",
    "RESPONSE_CACHE_KEY",
    "ResponseCache",
    "make_key",
    "response_cache_middleware",
    "routes_from_settings",
    "setup_response_cache",
    "warm_published_listings",
]
