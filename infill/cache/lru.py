"""Least-recently-used store for served suggestions."""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Iterator

from infill.core.errors import ConfigurationError


class LRUStore:
    """Fixed-capacity map from cache key to suggestion text.

    ``get`` and ``put`` both refresh recency; overflow evicts the single
    least recently used entry.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = _check_capacity(capacity)
        self._store: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._store.get(key)
            if value is None:
                return None
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: str) -> None:
        with self._lock:
            if key in self._store:
                self._store.move_to_end(key)
            self._store[key] = value
            if len(self._store) > self._capacity:
                self._store.popitem(last=False)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store

    def size(self) -> int:
        with self._lock:
            return len(self._store)

    __len__ = size

    def entries(self) -> Iterator[tuple[str, str]]:
        """Iterate a point-in-time snapshot, oldest first. For diagnostics."""
        with self._lock:
            snapshot = list(self._store.items())
        return iter(snapshot)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def resize(self, capacity: int) -> None:
        """Change capacity; the store is rebuilt empty."""
        capacity = _check_capacity(capacity)
        with self._lock:
            self._capacity = capacity
            self._store = OrderedDict()


def _check_capacity(capacity: int) -> int:
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise ConfigurationError(f"Capacity must be a positive integer, got {capacity!r}")
    return capacity
