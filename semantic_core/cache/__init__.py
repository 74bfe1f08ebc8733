"""
Caching primitives shared by the catalog and the entity resolver.
"""

from .ttl_cache import TTLCache, CacheEntry

__all__ = ["TTLCache", "CacheEntry"]
