"""
TrackingSession — live tracking of one resource over the adaptive sync layer.

Responsibilities:
- Run a poll loop whose interval follows the AdaptivePolicy for the current
  network quality, and reschedule it as soon as the quality changes.
- Fetch through the TTLCache, then the Prefetcher cache, then a
  RetryExecutor-wrapped backend read passed through the Codec.
- Publish TrackingSnapshot objects to listeners; a result is applied only
  while the session that issued it is still active and only if it is not
  older than the record already shown.

State machine: IDLE → CONNECTING → TRACKING ⇄ DISCONNECTED → IDLE (stop).
A failed fetch never ends the loop; the next tick is the recovery path.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Callable

from . import codec
from .batch import BatchWriteAggregator
from .cache import TTLCache
from .const import MIRROR_PATH, RESOURCES_PATH, RETRY_BASE_DELAY_MS
from .models import (
    OperatingConfig,
    QualityClass,
    SessionState,
    TrackedResource,
    TrackingSnapshot,
)
from .network import NetworkMonitor
from .offline_queue import OfflineQueue
from .policy import resolve
from .prefetch import Prefetcher
from .retry import RetryExecutor
from .scheduler import LoopScheduler, TimerHandle
from .store import DataStore
from .utils import epoch_ms

_LOGGER = logging.getLogger(__name__)

FETCH_MARKER = "fetch"

SnapshotListener = Callable[[TrackingSnapshot], None]


def resource_path(resource_id: str) -> str:
    return f"{RESOURCES_PATH}/{resource_id}"


def decode_record(raw: Any, config: OperatingConfig) -> tuple[dict[str, Any] | None, float | None]:
    """
    Pass a backend record through the codec when the policy asks for it.

    Returns (record, compression_ratio); the ratio is None when the record
    was not compressed.
    """
    if raw is None:
        return None, None
    if not isinstance(raw, dict):
        _LOGGER.error("Unexpected record format: %r", raw)
        return None, None
    if not config.compress:
        return dict(raw), None
    compact = codec.compress(raw, reduced=config.reduced_payload)
    return codec.decompress(compact), codec.compression_ratio(raw, compact)


class TrackingSession:
    """Adaptive poll loop for a single tracked resource."""

    def __init__(
        self,
        store: DataStore,
        monitor: NetworkMonitor,
        cache: TTLCache[str, dict],
        prefetcher: Prefetcher,
        aggregator: BatchWriteAggregator,
        offline_queue: OfflineQueue,
        retry: RetryExecutor,
        scheduler: LoopScheduler | None = None,
        clock: Callable[[], int] = epoch_ms,
        push_updates: bool = False,
        retry_base_delay_ms: int = RETRY_BASE_DELAY_MS,
    ) -> None:
        self._store = store
        self._monitor = monitor
        self._cache = cache
        self._prefetcher = prefetcher
        self._aggregator = aggregator
        self._offline_queue = offline_queue
        self._retry = retry
        self._scheduler = scheduler or LoopScheduler()
        self._clock = clock
        self._push_updates = push_updates
        self._retry_base_delay_ms = retry_base_delay_ms

        self._snapshot = TrackingSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._resource_id: str | None = None
        # Bumped on every start/stop; results from an older generation are discarded
        self._generation = 0
        self._timer: TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._push_unsubscribe: Callable[[], None] | None = None

        self.cache_hits = 0
        self.cache_misses = 0
        self.last_compression_ratio: float | None = None

        self._quality: QualityClass | None = None
        self._unsubscribe_network = monitor.on_change(self._on_quality_change)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> TrackingSnapshot:
        return self._snapshot

    @property
    def state(self) -> SessionState:
        return self._snapshot.connection_status

    @property
    def resource_id(self) -> str | None:
        return self._resource_id

    @property
    def quality(self) -> QualityClass:
        return self._quality or self._monitor.quality

    @property
    def config(self) -> OperatingConfig:
        return resolve(self.quality)

    @property
    def poll_timer(self) -> TimerHandle | None:
        return self._timer

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        return self.cache_hits / total if total else 0.0

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _set_snapshot(self, **changes: Any) -> None:
        self._snapshot = dataclasses.replace(self._snapshot, **changes)
        for listener in list(self._listeners):
            listener(self._snapshot)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, resource_id: str) -> None:
        """Begin tracking resource_id: one immediate fetch, then the poll loop."""
        if self._resource_id is not None:
            self.stop()

        self._generation += 1
        generation = self._generation
        self._resource_id = resource_id
        self._set_snapshot(data=None, connection_status=SessionState.CONNECTING, last_update_ms=None)
        _LOGGER.info("Tracking %s at %s quality", resource_id, self.quality.value)

        if self._push_updates:
            self._push_unsubscribe = self._store.subscribe(
                resource_path(resource_id),
                lambda value: self._on_push(generation, value),
            )

        await self._poll(generation)
        if generation == self._generation:
            self._schedule_next()

    def stop(self) -> None:
        """Cancel all timers and in-flight polls and return to IDLE."""
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._tasks):
            task.cancel()
        if self._push_unsubscribe is not None:
            self._push_unsubscribe()
            self._push_unsubscribe = None
        if self._resource_id is None and self._snapshot.connection_status is SessionState.IDLE:
            return
        _LOGGER.info("Stopped tracking %s", self._resource_id)
        self._resource_id = None
        self._snapshot = TrackingSnapshot()
        for listener in list(self._listeners):
            listener(self._snapshot)

    async def close(self) -> None:
        """Stop and release the network subscription."""
        self.stop()
        self._unsubscribe_network()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    def _schedule_next(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        interval = self.config.poll_interval_ms
        self._timer = self._scheduler.call_later(interval, self._on_timer)
        _LOGGER.debug("Next poll of %s in %s ms", self._resource_id, interval)

    def _on_timer(self) -> None:
        self._timer = None
        if self._resource_id is None:
            return
        # Keep a fixed cadence: the next tick is booked before this one's fetch runs
        self._schedule_next()
        self._spawn(self._poll(self._generation))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _poll(self, generation: int) -> None:
        resource_id = self._resource_id
        if resource_id is None:
            return
        try:
            record, fresh = await self._fetch(resource_id)
        except Exception as exc:  # noqa: BLE001
            if generation != self._generation:
                return
            _LOGGER.warning("Failed to fetch %s: %s", resource_id, exc)
            self._set_snapshot(connection_status=SessionState.DISCONNECTED)
            self._offline_queue.enqueue(
                resource_path(resource_id),
                {"action": FETCH_MARKER, "timestamp": self._clock()},
            )
            return

        if generation != self._generation:
            return
        if self._apply(resource_id, record, fresh):
            self._prefetcher.record_access(resource_path(resource_id))
            if self.config.batch:
                self._aggregator.add(f"{MIRROR_PATH}/{resource_path(resource_id)}", record)

    async def fetch_optimized(self, resource_id: str) -> dict[str, Any] | None:
        """Cache, then prefetch cache, then a retried backend read through the codec."""
        record, _ = await self._fetch(resource_id)
        return record

    async def _fetch(self, resource_id: str) -> tuple[dict[str, Any] | None, bool]:
        """Return (record, fresh); fresh is False when a cache answered."""
        key = resource_path(resource_id)

        cached = self._cache.get(key)
        if cached is not None:
            self.cache_hits += 1
            _LOGGER.debug("Cache hit for %s", key)
            return cached, False

        prefetched = self._prefetcher.get_cached(key)
        if prefetched is not None:
            self.cache_hits += 1
            _LOGGER.debug("Prefetch hit for %s", key)
            return prefetched, False

        self.cache_misses += 1
        config = self.config
        raw = await self._retry.run(
            lambda: self._store.read(key), config.max_retries, self._retry_base_delay_ms
        )
        record, ratio = decode_record(raw, config)
        if ratio is not None:
            self.last_compression_ratio = ratio
        if record is not None:
            self._cache.set(key, record)
        return record, True

    def _apply(self, resource_id: str, record: dict[str, Any] | None, fresh: bool = True) -> bool:
        """
        Publish a fetched record; returns True when it was usable.

        Records answered by a cache keep the existing last-update time, since
        nothing new was heard from the backend.
        """
        if record is None:
            # Backend reachable but the resource has no data yet
            self._set_snapshot(connection_status=SessionState.TRACKING)
            return False

        try:
            incoming = TrackedResource.from_record(resource_id, record)
        except (TypeError, ValueError) as exc:
            _LOGGER.error("Malformed record for %s: %s", resource_id, exc)
            self._cache.delete(resource_path(resource_id))
            self._set_snapshot(connection_status=SessionState.TRACKING)
            return False

        current = self._snapshot.data
        if current is not None and incoming.updated_at_ms < current.updated_at_ms:
            _LOGGER.debug(
                "Discarding stale result for %s (%s < %s)",
                resource_id, incoming.updated_at_ms, current.updated_at_ms,
            )
            self._set_snapshot(connection_status=SessionState.TRACKING)
            return True

        last_update_ms = self._snapshot.last_update_ms
        if fresh or last_update_ms is None:
            last_update_ms = self._clock()
        self._set_snapshot(
            data=incoming,
            connection_status=SessionState.TRACKING,
            last_update_ms=last_update_ms,
        )
        return True

    def _on_push(self, generation: int, value: Any) -> None:
        if generation != self._generation or self._resource_id is None:
            return
        record, _ = decode_record(value, self.config)
        if record is None:
            return
        self._cache.set(resource_path(self._resource_id), record)
        self._apply(self._resource_id, record)

    # ------------------------------------------------------------------
    # Network changes
    # ------------------------------------------------------------------

    def _on_quality_change(self, quality: QualityClass) -> None:
        previous = self._quality
        self._quality = quality
        if previous is None or previous is quality:
            return

        _LOGGER.debug("Network quality changed %s -> %s", previous.value, quality.value)
        if self._resource_id is not None and self.state in (
            SessionState.TRACKING,
            SessionState.DISCONNECTED,
        ):
            self._schedule_next()

        if quality is QualityClass.EXCELLENT:
            self._spawn(self._prefetcher.prefetch_top(self._load_for_prefetch, quality))

    async def _load_for_prefetch(self, key: str) -> dict[str, Any] | None:
        raw = await self._store.read(key)
        record, _ = decode_record(raw, self.config)
        return record
