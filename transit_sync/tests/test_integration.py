"""
Real backend integration tests for the sync layer.
Requires TRANSIT_SYNC_DATABASE_URL (and TRANSIT_SYNC_AUTH_TOKEN if the
database rules need it) to run.
Skip with:  pytest -k "not Integration"
"""

from __future__ import annotations

import os
import unittest
import uuid

from dotenv import load_dotenv

from transit_sync.config import ENV_AUTH_TOKEN, ENV_DATABASE_URL, load_config
from transit_sync.context import SyncContext
from transit_sync.models import QualityClass, SessionState
from transit_sync.network import ConnectivitySignal, ManualConnectionInfo

from .test_common import SAMPLES


class TestFirebaseIntegration(unittest.IsolatedAsyncioTestCase):
    """
    Integration tests that hit a real Firebase Realtime Database.
    Skipped automatically when TRANSIT_SYNC_DATABASE_URL is not set.
    """

    def setUp(self):
        load_dotenv()
        if not os.getenv(ENV_DATABASE_URL):
            self.skipTest(f"{ENV_DATABASE_URL} not set, skipping integration tests")
        self.bus_id = f"TEST_{uuid.uuid4().hex[:8].upper()}"

    def _make_context(self, quality: QualityClass = QualityClass.EXCELLENT) -> SyncContext:
        return SyncContext(
            load_config(),
            connection_info=ManualConnectionInfo(SAMPLES[quality]),
            connectivity=ConnectivitySignal(online=True),
        )

    async def asyncTearDown(self):
        ctx = self._make_context()
        await ctx.store.write(f"buses/{self.bus_id}", None)
        await ctx.close()

    async def test_publish_then_track(self):
        async with self._make_context() as ctx:
            publisher = ctx.create_publisher(self.bus_id, route_name="Integration Route")
            self.assertTrue(await publisher.publish(23.181467, 79.986407, speed=10, heading=90))

            session = ctx.create_session()
            await session.start(self.bus_id)
            self.assertIs(session.state, SessionState.TRACKING)
            self.assertEqual(session.snapshot.data.resource_id, self.bus_id)
            self.assertAlmostEqual(session.snapshot.data.lat, 23.181467, places=5)

    async def test_missing_resource_tracks_without_data(self):
        async with self._make_context(QualityClass.GOOD) as ctx:
            session = ctx.create_session()
            await session.start(self.bus_id)
            self.assertIs(session.state, SessionState.TRACKING)
            self.assertIsNone(session.snapshot.data)

    async def test_auth_token_is_optional(self):
        config = load_config()
        self.assertEqual(config.auth_token, os.getenv(ENV_AUTH_TOKEN) or None)


if __name__ == "__main__":
    unittest.main()
