"""
PositionPublisher — driver-side write path for live positions.

Positions are throttled, then either handed to the BatchWriteAggregator
(when the policy batches) or written through the RetryExecutor. Writes that
still fail while the runtime is offline land in the OfflineQueue.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from .batch import BatchWriteAggregator
from .const import (
    PNR_INDEX_PATH,
    PUBLISH_MIN_INTERVAL_MS,
    PUBLISH_MIN_MOVE_METERS,
    RETRY_BASE_DELAY_MS,
)
from .geo import haversine_meters
from .lookup import sanitize_key
from .network import NetworkMonitor
from .offline_queue import OfflineQueue
from .policy import resolve
from .retry import RetryExecutor
from .session import resource_path
from .store import DataStore
from .utils import epoch_ms

_LOGGER = logging.getLogger(__name__)


class PositionPublisher:
    """Broadcasts one vehicle's position to the backend."""

    def __init__(
        self,
        bus_id: str,
        store: DataStore,
        monitor: NetworkMonitor,
        aggregator: BatchWriteAggregator,
        offline_queue: OfflineQueue,
        retry: RetryExecutor,
        driver_id: str | None = None,
        route_name: str | None = None,
        pnr: str | None = None,
        clock: Callable[[], int] = epoch_ms,
        retry_base_delay_ms: int = RETRY_BASE_DELAY_MS,
    ) -> None:
        if not bus_id:
            raise ValueError("bus_id is required")
        self.bus_id = bus_id
        self.driver_id = driver_id
        self.route_name = route_name
        self.pnr = pnr
        self._store = store
        self._monitor = monitor
        self._aggregator = aggregator
        self._offline_queue = offline_queue
        self._retry = retry
        self._clock = clock
        self._retry_base_delay_ms = retry_base_delay_ms
        # (sent_at_ms, lat, lon) of the last position that was sent
        self._last_sent: tuple[int, float, float] | None = None

    @property
    def path(self) -> str:
        return resource_path(self.bus_id)

    def _should_send(self, lat: float, lon: float, now: int) -> bool:
        if self._last_sent is None:
            return True
        sent_at, last_lat, last_lon = self._last_sent
        moved_enough = haversine_meters(last_lat, last_lon, lat, lon) >= PUBLISH_MIN_MOVE_METERS
        time_enough = now - sent_at >= PUBLISH_MIN_INTERVAL_MS
        return moved_enough or time_enough

    def _build_writes(self, payload: dict[str, Any], now: int) -> list[tuple[str, dict[str, Any]]]:
        writes = [(self.path, payload)]
        if self.pnr:
            writes.append(
                (f"{PNR_INDEX_PATH}/{sanitize_key(self.pnr)}", {"busId": self.bus_id, "updatedAt": now})
            )
        return writes

    async def publish(
        self,
        lat: float,
        lon: float,
        speed: float | None = None,
        heading: float | None = None,
    ) -> bool:
        """
        Send a position unless throttled.

        Returns True when the position was written or handed to the batch
        aggregator, False when throttled or when the write failed.
        """
        now = self._clock()
        if not self._should_send(lat, lon, now):
            _LOGGER.debug("Position for %s throttled", self.bus_id)
            return False
        self._last_sent = (now, lat, lon)

        payload = {
            "busId": self.bus_id,
            "driverId": self.driver_id,
            "lat": lat,
            "lon": lon,
            "speed": speed,
            "heading": heading,
            "routeName": self.route_name,
            "status": "online",
            "updatedAt": now,
        }
        writes = self._build_writes(payload, now)

        config = resolve(self._monitor.quality)
        if config.batch:
            for path, values in writes:
                self._aggregator.add(path, values)
            return True

        return await self._send(writes, config.max_retries)

    async def mark_offline(self) -> bool:
        """Flag the vehicle as offline, e.g. when the driver stops sharing."""
        now = self._clock()
        config = resolve(self._monitor.quality)
        return await self._send([(self.path, {"status": "offline", "updatedAt": now})], config.max_retries)

    async def _send(self, writes: list[tuple[str, dict[str, Any]]], max_retries: int) -> bool:
        for index, (path, values) in enumerate(writes):
            try:
                await self._retry.run(
                    lambda p=path, v=values: self._store.update(p, v),
                    max_retries,
                    self._retry_base_delay_ms,
                )
            except Exception as exc:  # noqa: BLE001
                _LOGGER.warning("Failed to write %s: %s", path, exc)
                queued = [self._offline_queue.enqueue(p, v) for p, v in writes[index:]]
                if not any(queued):
                    _LOGGER.debug("Dropped %s writes for %s while online", len(queued), self.bus_id)
                return False
        return True
