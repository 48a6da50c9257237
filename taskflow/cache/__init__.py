from taskflow.cache.layer import CacheItem, CacheLayer, CacheStats, get_cache_layer, set_cache_layer
from taskflow.cache.store import KeyStore

__all__ = [
    "CacheItem",
    "CacheLayer",
    "CacheStats",
    "KeyStore",
    "get_cache_layer",
    "set_cache_layer",
]
