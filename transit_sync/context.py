"""
SyncContext — owns the shared sync components for one application.

Replaces process-wide singletons: every cache, queue and aggregator is built
here from a SyncConfig, handed to the sessions and publishers created through
the context, and torn down by close().
"""
from __future__ import annotations

import logging
from typing import Any

from .batch import BatchWriteAggregator
from .cache import TTLCache
from .config import SyncConfig
from .models import NetworkStatus, OperatingConfig, QueuedWrite
from .network import ConnectionInfoProvider, ConnectivitySignal, NetworkMonitor
from .offline_queue import OfflineQueue
from .policy import resolve
from .prefetch import Prefetcher
from .publisher import PositionPublisher
from .retry import RetryExecutor
from .scheduler import LoopScheduler
from .session import FETCH_MARKER, TrackingSession, decode_record
from .store import DataStore, FirebaseRestStore, MemoryStore

_LOGGER = logging.getLogger(__name__)


def _flatten_updates(entries: list[tuple[str, Any]]) -> dict[str, Any]:
    """Expand (path, mapping) pairs into child paths so a multi-path write merges."""
    updates: dict[str, Any] = {}
    for path, payload in entries:
        if isinstance(payload, dict):
            for field, value in payload.items():
                updates[f"{path}/{field}"] = value
        else:
            updates[path] = payload
    return updates


class SyncContext:
    """Application-scoped container for the adaptive sync layer."""

    def __init__(
        self,
        config: SyncConfig | None = None,
        store: DataStore | None = None,
        connection_info: ConnectionInfoProvider | None = None,
        connectivity: ConnectivitySignal | None = None,
        scheduler: LoopScheduler | None = None,
        retry: RetryExecutor | None = None,
    ) -> None:
        self.config = config or SyncConfig()
        if store is None:
            if self.config.database_url:
                store = FirebaseRestStore(
                    self.config.database_url,
                    auth_token=self.config.auth_token,
                    timeout=self.config.request_timeout,
                )
            else:
                _LOGGER.warning("No database URL configured, using an in-memory store")
                store = MemoryStore()
        self.store = store
        self.connectivity = connectivity or ConnectivitySignal()
        self.monitor = NetworkMonitor(connection_info)
        self.scheduler = scheduler or LoopScheduler()
        self.retry = retry or RetryExecutor()

        self.cache: TTLCache[str, dict] = TTLCache(self.config.cache_capacity, self.config.cache_ttl_ms)
        self.prefetcher = Prefetcher(
            TTLCache(self.config.prefetch_capacity, self.config.prefetch_ttl_ms),
            top_n=self.config.prefetch_top_n,
        )
        self.aggregator = BatchWriteAggregator(
            self._flush_batch, self.config.batch_delay_ms, self.scheduler
        )
        self.offline_queue = OfflineQueue(
            self.connectivity, self._replay_write, self.config.offline_queue_capacity
        )
        self._sessions: list[TrackingSession] = []
        self._closed = False

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def operating_config(self) -> OperatingConfig:
        return resolve(self.monitor.quality)

    def network_status(self) -> NetworkStatus:
        sample = self.monitor.sample()
        return NetworkStatus(
            quality=self.monitor.classify(sample),
            effective_type=sample.effective_type,
            downlink_mbps=sample.downlink_mbps,
            rtt_ms=sample.rtt_ms,
            is_online=self.connectivity.is_online,
        )

    def create_session(self) -> TrackingSession:
        session = TrackingSession(
            store=self.store,
            monitor=self.monitor,
            cache=self.cache,
            prefetcher=self.prefetcher,
            aggregator=self.aggregator,
            offline_queue=self.offline_queue,
            retry=self.retry,
            scheduler=self.scheduler,
            push_updates=self.config.push_updates,
            retry_base_delay_ms=self.config.retry_base_delay_ms,
        )
        self._sessions.append(session)
        return session

    def create_publisher(
        self,
        bus_id: str,
        driver_id: str | None = None,
        route_name: str | None = None,
        pnr: str | None = None,
    ) -> PositionPublisher:
        return PositionPublisher(
            bus_id,
            store=self.store,
            monitor=self.monitor,
            aggregator=self.aggregator,
            offline_queue=self.offline_queue,
            retry=self.retry,
            driver_id=driver_id,
            route_name=route_name,
            pnr=pnr,
            retry_base_delay_ms=self.config.retry_base_delay_ms,
        )

    async def close(self) -> None:
        """Stop every session, flush pending writes and release the store."""
        if self._closed:
            return
        self._closed = True
        for session in self._sessions:
            await session.close()
        self._sessions.clear()
        await self.aggregator.shutdown()
        await self.offline_queue.shutdown()
        await self.store.close()

    async def __aenter__(self) -> SyncContext:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Write paths wired into the shared components
    # ------------------------------------------------------------------

    async def _flush_batch(self, entries: list[tuple[str, Any]]) -> None:
        """Batch sink: one multi-path write; offline failures move to the offline queue."""
        updates = _flatten_updates(entries)
        try:
            await self.retry.run(
                lambda: self.store.write_many(updates),
                self.operating_config.max_retries,
                self.config.retry_base_delay_ms,
            )
        except Exception:  # noqa: BLE001
            if not self.offline_queue.is_offline():
                raise
            for path, payload in entries:
                self.offline_queue.enqueue(path, payload)
            _LOGGER.warning("Batch write failed while offline, queued %s entries", len(entries))

    async def _replay_write(self, item: QueuedWrite) -> None:
        """Replay one queued write; fetch markers refresh the cache instead."""
        max_retries = self.operating_config.max_retries
        payload = item.payload
        if isinstance(payload, dict) and payload.get("action") == FETCH_MARKER:
            raw = await self.retry.run(
                lambda: self.store.read(item.target_key),
                max_retries,
                self.config.retry_base_delay_ms,
            )
            record, _ = decode_record(raw, self.operating_config)
            if record is not None:
                self.cache.set(item.target_key, record)
            return

        async def _write() -> None:
            if isinstance(payload, dict):
                await self.store.update(item.target_key, payload)
            else:
                await self.store.write(item.target_key, payload)

        await self.retry.run(_write, max_retries, self.config.retry_base_delay_ms)
