"""Tests for the access-frequency Prefetcher."""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock

from transit_sync.cache import TTLCache
from transit_sync.errors import ReadError
from transit_sync.models import QualityClass
from transit_sync.prefetch import Prefetcher


def make_prefetcher(top_n: int = 5) -> Prefetcher:
    return Prefetcher(TTLCache(capacity=50, default_ttl_ms=300000), top_n=top_n)


class TestPrefetcher(unittest.IsolatedAsyncioTestCase):

    async def test_record_access_counts(self):
        prefetcher = make_prefetcher()
        for _ in range(3):
            prefetcher.record_access("buses/A")
        prefetcher.record_access("buses/B")
        self.assertEqual(prefetcher.access_count("buses/A"), 3)
        self.assertEqual(prefetcher.access_count("buses/B"), 1)
        self.assertEqual(prefetcher.access_count("buses/C"), 0)

    async def test_top_candidates_ranked_and_limited(self):
        prefetcher = make_prefetcher(top_n=2)
        for key, hits in (("a", 1), ("b", 5), ("c", 3)):
            for _ in range(hits):
                prefetcher.record_access(key)
        self.assertEqual(prefetcher.top_candidates(), ["b", "c"])

    async def test_poor_network_is_a_no_op(self):
        prefetcher = make_prefetcher()
        prefetcher.record_access("buses/A")
        loader = AsyncMock(return_value={"lat": 1})
        stored = await prefetcher.prefetch_top(loader, QualityClass.POOR)
        self.assertEqual(stored, 0)
        loader.assert_not_awaited()
        self.assertEqual(prefetcher.cached_count(), 0)

    async def test_loads_top_candidates(self):
        prefetcher = make_prefetcher()
        prefetcher.record_access("buses/A")
        prefetcher.record_access("buses/B")
        loader = AsyncMock(side_effect=lambda key: {"key": key})
        stored = await prefetcher.prefetch_top(loader, QualityClass.EXCELLENT)
        self.assertEqual(stored, 2)
        self.assertEqual(prefetcher.get_cached("buses/A"), {"key": "buses/A"})

    async def test_cached_keys_are_skipped(self):
        prefetcher = make_prefetcher()
        prefetcher.record_access("buses/A")
        loader = AsyncMock(return_value={"lat": 1})
        await prefetcher.prefetch_top(loader, QualityClass.GOOD)
        await prefetcher.prefetch_top(loader, QualityClass.GOOD)
        loader.assert_awaited_once_with("buses/A")

    async def test_loader_failure_does_not_stop_others(self):
        prefetcher = make_prefetcher()
        prefetcher.record_access("buses/A")
        prefetcher.record_access("buses/A")
        prefetcher.record_access("buses/B")

        async def loader(key):
            if key == "buses/A":
                raise ReadError("down")
            return {"key": key}

        stored = await prefetcher.prefetch_top(loader, QualityClass.EXCELLENT)
        self.assertEqual(stored, 1)
        self.assertIsNone(prefetcher.get_cached("buses/A"))
        self.assertIsNotNone(prefetcher.get_cached("buses/B"))

    async def test_missing_records_not_cached(self):
        prefetcher = make_prefetcher()
        prefetcher.record_access("buses/GONE")
        stored = await prefetcher.prefetch_top(AsyncMock(return_value=None), QualityClass.EXCELLENT)
        self.assertEqual(stored, 0)
        self.assertEqual(prefetcher.cached_count(), 0)

    async def test_concurrent_pass_is_skipped(self):
        prefetcher = make_prefetcher()
        prefetcher.record_access("buses/A")
        gate = asyncio.Event()

        async def slow_load(key):
            await gate.wait()
            return {"key": key}

        loader = AsyncMock(side_effect=slow_load)
        first = asyncio.ensure_future(prefetcher.prefetch_top(loader, QualityClass.EXCELLENT))
        await asyncio.sleep(0)

        self.assertEqual(await prefetcher.prefetch_top(loader, QualityClass.EXCELLENT), 0)
        gate.set()
        self.assertEqual(await first, 1)
        loader.assert_awaited_once_with("buses/A")

        # The guard is released once the pass ends
        prefetcher.record_access("buses/B")
        self.assertEqual(await prefetcher.prefetch_top(loader, QualityClass.EXCELLENT), 1)

    async def test_clear_keeps_counts(self):
        prefetcher = make_prefetcher()
        prefetcher.record_access("buses/A")
        await prefetcher.prefetch_top(AsyncMock(return_value={"x": 1}), QualityClass.GOOD)
        prefetcher.clear()
        self.assertEqual(prefetcher.cached_count(), 0)
        self.assertEqual(prefetcher.access_count("buses/A"), 1)


if __name__ == "__main__":
    unittest.main()
