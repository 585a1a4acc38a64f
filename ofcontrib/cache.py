"""Flag resolution caches used by the flagd provider."""

from __future__ import annotations

import threading
from collections import OrderedDict
from enum import Enum
from typing import Any, Hashable, Union

from ofcontrib.logger import ProviderLogger


class CacheType(str, Enum):
    """Supported cache kinds."""

    LRU = "lru"
    IN_MEMORY = "mem"
    DISABLED = "disabled"


class InMemoryCache:
    """An unbounded, thread-safe cache."""

    def __init__(self) -> None:
        self._values: dict[Hashable, Any] = {}
        self._lock = threading.RLock()

    def add(self, key: Hashable, value: Any) -> bool:
        """Store a value; never evicts, so always returns False."""
        with self._lock:
            self._values[key] = value
        return False

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def remove(self, key: Hashable) -> bool:
        """Drop a key; return whether it was present."""
        with self._lock:
            return self._values.pop(key, _MISSING) is not _MISSING

    def purge(self) -> None:
        with self._lock:
            self._values.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


class LRUCache:
    """A thread-safe cache evicting the least recently used entry."""

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ValueError("must provide a positive size")
        self.size = size
        self._values: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.RLock()

    def add(self, key: Hashable, value: Any) -> bool:
        """Store a value; return whether an older entry was evicted."""
        with self._lock:
            if key in self._values:
                self._values.move_to_end(key)
                self._values[key] = value
                return False
            self._values[key] = value
            if len(self._values) > self.size:
                self._values.popitem(last=False)
                return True
            return False

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            if key not in self._values:
                return default
            self._values.move_to_end(key)
            return self._values[key]

    def remove(self, key: Hashable) -> bool:
        with self._lock:
            return self._values.pop(key, _MISSING) is not _MISSING

    def purge(self) -> None:
        with self._lock:
            self._values.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


Cache = Union[InMemoryCache, LRUCache]

_MISSING = object()


class CacheService:
    """Owns the configured cache and whether caching is active."""

    def __init__(
        self,
        cache_type: CacheType | str,
        max_size: int,
        logger: ProviderLogger | None = None,
    ) -> None:
        self._logger = logger or ProviderLogger()
        self.cache: Cache | None = None
        self._enabled = False

        try:
            kind = CacheType(cache_type)
        except ValueError:
            kind = CacheType.DISABLED

        if kind is CacheType.LRU:
            try:
                self.cache = LRUCache(max_size)
            except ValueError as err:
                self._logger.error(err, "init lru cache")
            else:
                self._enabled = True
        elif kind is CacheType.IN_MEMORY:
            self.cache = InMemoryCache()
            self._enabled = True

    def enabled(self) -> bool:
        return self._enabled

    def disable(self) -> None:
        """Turn caching off and drop everything cached."""
        if self._enabled:
            self._enabled = False
            if self.cache is not None:
                self.cache.purge()