"""Capacity-bounded least-recently-used cache for compiled engines."""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Hashable
from typing import Any, Optional


class EngineCache:
    """Thread-safe LRU cache keyed by flow id.

    Every operation is O(1). When ``capacity`` is positive, inserting a new
    key into a full cache evicts the least-recently-used entry. A
    non-positive capacity disables bounding, so nothing is ever evicted.
    """

    def __init__(self, capacity: int = 0) -> None:
        self._capacity = capacity
        self._lock = threading.Lock()
        self._items: OrderedDict[Hashable, Any] = OrderedDict()  # LRU first, MRU last

    @property
    def capacity(self) -> int:
        """Maximum number of entries; 0 or less means unbounded."""
        return self._capacity

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the value for ``key`` and mark it most recently used; ``None`` if absent."""
        with self._lock:
            if key not in self._items:
                return None
            self._items.move_to_end(key)
            return self._items[key]

    def set(self, key: Hashable, value: Any) -> None:
        """Insert or replace ``key``; a new key may evict the least recently used entry."""
        with self._lock:
            if key in self._items:
                self._items[key] = value
                self._items.move_to_end(key)
                return
            self._items[key] = value
            if self._capacity > 0 and len(self._items) > self._capacity:
                self._items.popitem(last=False)

    def delete(self, key: Hashable) -> None:
        """Drop ``key`` if present; deleting a missing key does nothing."""
        with self._lock:
            self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        """Membership test that leaves the recency order untouched."""
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)