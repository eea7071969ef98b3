"""
TTLCache — bounded key/value store with per-entry expiry.

Eviction is by insertion order (the oldest inserted entry goes first), not
by access. Expiry is checked lazily on read and does not slide.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Generic, Hashable, TypeVar

from .const import CACHE_CAPACITY, CACHE_TTL_MS
from .utils import monotonic_ms

_LOGGER = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclasses.dataclass
class CacheEntry(Generic[V]):
    data: V
    created_at: float
    ttl_ms: int


class TTLCache(Generic[K, V]):
    """Bounded cache; size never exceeds capacity."""

    def __init__(
        self,
        capacity: int = CACHE_CAPACITY,
        default_ttl_ms: int = CACHE_TTL_MS,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock
        # dicts keep insertion order, which is the eviction order
        self._entries: dict[K, CacheEntry[V]] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def set(self, key: K, value: V, ttl_ms: int | None = None) -> None:
        """Insert or replace key, evicting the oldest entry when full."""
        # A replaced key counts as newly inserted
        self._entries.pop(key, None)
        if len(self._entries) >= self._capacity:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            _LOGGER.debug("Cache full, evicted %s", oldest)
        self._entries[key] = CacheEntry(
            data=value,
            created_at=self._clock(),
            ttl_ms=self._default_ttl_ms if ttl_ms is None else ttl_ms,
        )

    def get(self, key: K) -> V | None:
        """Return the cached value, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at > entry.ttl_ms:
            del self._entries[key]
            return None
        return entry.data

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def delete(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
