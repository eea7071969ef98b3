"""
Prefetcher — warms a private cache with the most frequently accessed resources.

Recording an access is always free; prefetching only happens when the
network is better than poor.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Awaitable, Callable

from .cache import TTLCache
from .const import PREFETCH_CAPACITY, PREFETCH_TOP_N, PREFETCH_TTL_MS
from .models import QualityClass

_LOGGER = logging.getLogger(__name__)


class Prefetcher:
    """Access-frequency driven cache warmer."""

    def __init__(
        self,
        cache: TTLCache[str, Any] | None = None,
        top_n: int = PREFETCH_TOP_N,
    ) -> None:
        self._cache = cache if cache is not None else TTLCache(PREFETCH_CAPACITY, PREFETCH_TTL_MS)
        self._top_n = top_n
        # Counts only ever grow for the life of the process
        self._access_counts: Counter[str] = Counter()
        self._in_flight = False

    def record_access(self, key: str) -> None:
        self._access_counts[key] += 1

    def access_count(self, key: str) -> int:
        return self._access_counts[key]

    def top_candidates(self) -> list[str]:
        """Keys ranked by descending access count, ties in first-seen order."""
        return [key for key, _ in self._access_counts.most_common(self._top_n)]

    async def prefetch_top(
        self,
        loader: Callable[[str], Awaitable[Any]],
        quality: QualityClass,
    ) -> int:
        """
        Load the top candidates that are not cached yet.

        Returns the number of resources stored. Loader failures are logged and
        do not stop the remaining candidates. Only one pass runs at a time; a
        call made while another is running stores nothing.
        """
        if quality is QualityClass.POOR:
            _LOGGER.debug("Skipping prefetch on poor network")
            return 0
        if self._in_flight:
            _LOGGER.debug("Prefetch already running")
            return 0

        self._in_flight = True
        stored = 0
        try:
            for key in self.top_candidates():
                if self._cache.get(key) is not None:
                    continue
                try:
                    data = await loader(key)
                except Exception as exc:  # noqa: BLE001
                    _LOGGER.warning("Failed to prefetch %s: %s", key, exc)
                    continue
                if data is None:
                    continue
                self._cache.set(key, data)
                stored += 1
        finally:
            self._in_flight = False
        if stored:
            _LOGGER.debug("Prefetched %s resources", stored)
        return stored

    def get_cached(self, key: str) -> Any | None:
        return self._cache.get(key)

    def cached_count(self) -> int:
        return self._cache.size()

    def clear(self) -> None:
        self._cache.clear()
