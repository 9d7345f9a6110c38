"""Cache key derivation and partial-prompt lookup."""

from __future__ import annotations

import hashlib
import logging

from .lru import LRUStore

logger = logging.getLogger(__name__)

_KEY_DELIMITER = "|"


def derive_key(prefix: str, suffix: str, prompt: str) -> str:
    """SHA-256 hex digest of the three request fragments."""
    joined = _KEY_DELIMITER.join((prefix, suffix, prompt))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


class CacheKeyService:
    """Key derivation plus backtracking lookups against an :class:`LRUStore`."""

    def __init__(self, store: LRUStore, *, max_backtrack: int | None = None) -> None:
        self.store = store
        self.max_backtrack = max_backtrack

    def get(self, prefix: str, suffix: str, prompt: str) -> str | None:
        return self.store.get(derive_key(prefix, suffix, prompt))

    def put(self, prefix: str, suffix: str, prompt: str, value: str) -> str:
        key = derive_key(prefix, suffix, prompt)
        self.store.put(key, value)
        return key

    def contains(self, prefix: str, suffix: str, prompt: str) -> bool:
        return derive_key(prefix, suffix, prompt) in self.store

    def lookup_with_backtracking(self, prefix: str, suffix: str, prompt: str) -> str | None:
        """Serve a cached suggestion, reusing entries computed for shorter prompts.

        An entry cached for ``prompt[:i]`` still answers the longer prompt when
        its value begins with the characters typed since (``prompt[i:]``); only
        the remainder is returned.
        """
        exact = self.store.get(derive_key(prefix, suffix, prompt))
        if exact is not None:
            logger.debug("Cache hit (exact) for prompt of length %d", len(prompt))
            return exact

        lowest = 0
        if self.max_backtrack is not None:
            lowest = max(0, len(prompt) - self.max_backtrack)
        for i in range(len(prompt), lowest - 1, -1):
            removed_tail = prompt[i:]
            cached = self.store.get(derive_key(prefix, suffix, prompt[:i]))
            if cached is not None and cached.startswith(removed_tail):
                logger.debug("Cache hit (backtracked %d chars)", len(removed_tail))
                return cached[len(removed_tail):]
        return None
