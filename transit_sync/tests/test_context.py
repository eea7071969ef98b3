"""
Tests for SyncContext: component wiring, the batch sink, offline replay
and teardown.
"""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock

from transit_sync.config import SyncConfig
from transit_sync.context import SyncContext, _flatten_updates
from transit_sync.errors import ReadError, WriteError
from transit_sync.models import NetworkStatus, QualityClass, SessionState
from transit_sync.store import FirebaseRestStore, MemoryStore

from .test_common import SAMPLES, drain, make_context, make_record, set_quality


class TestContextWiring(unittest.IsolatedAsyncioTestCase):

    async def test_defaults_to_memory_store(self):
        with self.assertLogs("transit_sync.context", level="WARNING"):
            ctx = SyncContext()
        self.assertIsInstance(ctx.store, MemoryStore)
        self.assertIs(ctx.monitor.quality, QualityClass.GOOD)
        await ctx.close()

    async def test_database_url_selects_rest_store(self):
        ctx = SyncContext(SyncConfig(database_url="https://demo.firebaseio.com", auth_token="t"))
        self.assertIsInstance(ctx.store, FirebaseRestStore)
        await ctx.close()

    async def test_config_sizes_components(self):
        ctx = make_context(cache_capacity=7, batch_delay_ms=250)
        self.assertEqual(ctx.cache.capacity, 7)
        ctx.aggregator.add("buses/A", {"lat": 1})
        self.assertEqual(ctx.scheduler.pending[0].delay_ms, 250)
        await ctx.close()

    async def test_network_status(self):
        ctx = make_context(QualityClass.POOR, online=False)
        sample = SAMPLES[QualityClass.POOR]
        self.assertEqual(
            ctx.network_status(),
            NetworkStatus(
                quality=QualityClass.POOR,
                effective_type=sample.effective_type,
                downlink_mbps=sample.downlink_mbps,
                rtt_ms=sample.rtt_ms,
                is_online=False,
            ),
        )
        set_quality(ctx, QualityClass.EXCELLENT)
        self.assertIs(ctx.network_status().quality, QualityClass.EXCELLENT)
        self.assertEqual(ctx.operating_config.poll_interval_ms, 5000)
        await ctx.close()

    async def test_sessions_share_cache(self):
        ctx = make_context(QualityClass.EXCELLENT)
        ctx.store.read = AsyncMock(return_value=make_record())
        first = ctx.create_session()
        second = ctx.create_session()
        await first.start("BUS001")
        await second.start("BUS001")
        ctx.store.read.assert_awaited_once()
        self.assertEqual(second.cache_hits, 1)
        await ctx.close()

    async def test_close_stops_sessions_and_flushes(self):
        ctx = make_context(QualityClass.POOR)
        ctx.store.read = AsyncMock(return_value=make_record())
        session = ctx.create_session()
        await session.start("BUS001")
        self.assertTrue(ctx.aggregator.pending)

        await ctx.close()
        await ctx.close()
        self.assertIs(session.state, SessionState.IDLE)
        self.assertEqual(ctx.aggregator.pending, {})
        del ctx.store.read
        mirrored = await ctx.store.read("mirror/buses/BUS001")
        self.assertEqual(mirrored["busId"], "BUS001")

    async def test_async_context_manager(self):
        async with make_context() as ctx:
            session = ctx.create_session()
        self.assertIs(session.state, SessionState.IDLE)


class TestBatchSink(unittest.IsolatedAsyncioTestCase):

    def test_flatten_updates(self):
        self.assertEqual(
            _flatten_updates([("buses/A", {"lat": 1, "lon": 2}), ("counters/total", 5)]),
            {"buses/A/lat": 1, "buses/A/lon": 2, "counters/total": 5},
        )

    async def test_flush_merges_into_store(self):
        ctx = make_context(store=MemoryStore({"buses": {"A": {"status": "online"}}}))
        ctx.aggregator.add("buses/A", {"lat": 1, "lon": 2})
        await ctx.aggregator.flush()
        self.assertEqual(await ctx.store.read("buses/A"), {"status": "online", "lat": 1, "lon": 2})
        await ctx.close()

    async def test_offline_failure_moves_to_offline_queue(self):
        ctx = make_context(QualityClass.POOR, online=False)
        ctx.store.write_many = AsyncMock(side_effect=WriteError("down"))
        ctx.aggregator.add("buses/A", {"lat": 1})
        await ctx.aggregator.flush()

        # 1 attempt + 2 retries on a poor network
        self.assertEqual(ctx.store.write_many.await_count, 3)
        self.assertEqual(ctx.aggregator.pending, {})
        self.assertEqual([item.target_key for item in ctx.offline_queue.items()], ["buses/A"])
        await ctx.close()

    async def test_online_failure_stays_pending(self):
        ctx = make_context(QualityClass.POOR, online=True)
        ctx.store.write_many = AsyncMock(side_effect=WriteError("500"))
        ctx.aggregator.add("buses/A", {"lat": 1})
        await ctx.aggregator.flush()
        self.assertEqual(ctx.aggregator.pending, {"buses/A": {"lat": 1}})
        self.assertEqual(ctx.offline_queue.size(), 0)
        await ctx.close()


class TestOfflineReplay(unittest.IsolatedAsyncioTestCase):

    async def test_reconnect_replays_writes(self):
        ctx = make_context(online=False)
        ctx.offline_queue.enqueue("buses/A", {"status": "offline"})
        ctx.offline_queue.enqueue("buses/A/note", "late")
        ctx.connectivity.set_online(True)
        await ctx.offline_queue.wait_idle()

        self.assertEqual(await ctx.store.read("buses/A"), {"status": "offline", "note": "late"})
        self.assertEqual(ctx.offline_queue.size(), 0)
        await ctx.close()

    async def test_fetch_marker_warms_cache(self):
        store = MemoryStore({"buses": {"BUS001": make_record()}})
        ctx = make_context(store=store, online=False)
        ctx.offline_queue.enqueue("buses/BUS001", {"action": "fetch", "timestamp": 1})
        ctx.connectivity.set_online(True)
        await ctx.offline_queue.wait_idle()

        self.assertEqual(ctx.cache.get("buses/BUS001"), make_record())
        # Markers are never written back
        self.assertNotIn("action", await store.read("buses/BUS001"))
        await ctx.close()

    async def test_failed_session_fetch_recovers_on_reconnect(self):
        ctx = make_context(QualityClass.POOR, online=False)
        ctx.store.read = AsyncMock(side_effect=ReadError("down"))
        session = ctx.create_session()
        await session.start("BUS001")
        self.assertEqual(ctx.offline_queue.size(), 1)

        ctx.store.read = AsyncMock(return_value=make_record())
        ctx.connectivity.set_online(True)
        await ctx.offline_queue.wait_idle()
        self.assertIsNotNone(ctx.cache.get("buses/BUS001"))

        # The next tick is served from the warmed cache
        ctx.store.read.reset_mock()
        session.poll_timer.fire()
        await drain()
        ctx.store.read.assert_not_awaited()
        self.assertIs(session.state, SessionState.TRACKING)
        await ctx.close()


if __name__ == "__main__":
    unittest.main()
