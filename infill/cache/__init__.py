"""Suggestion result cache."""

from .keys import CacheKeyService, derive_key
from .lru import LRUStore

__all__ = ["CacheKeyService", "LRUStore", "derive_key"]
