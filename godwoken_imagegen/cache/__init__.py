"""Component artifact cache.

This module handles:
- The has / fetch / put cache contract
- Per-key write-once locking
- The SQL index of cached artifacts
"""

from godwoken_imagegen.cache.store import CacheStore, DiskCacheStore, InMemoryCacheStore

__all__ = ["CacheStore", "DiskCacheStore", "InMemoryCacheStore"]
