"""
OfflineQueue — bounded FIFO of writes made while offline, replayed on reconnect.

Pure asyncio primitive: replay work is delegated to an injected handler.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable

from .const import OFFLINE_QUEUE_CAPACITY, STALE_WRITE_AGE_MS
from .models import QueuedWrite
from .network import ConnectivitySignal
from .utils import monotonic_ms

_LOGGER = logging.getLogger(__name__)

ReplayHandler = Callable[[QueuedWrite], Awaitable[Any]]


class OfflineQueue:
    """
    Holds writes while the runtime is offline.

    On the offline→online transition the queue is swapped for an empty one
    and the previous contents are replayed in order. Entries older than the
    stale age are dropped unreplayed. If a replay fails, the failed entry and
    everything after it go back to the front of the queue in their original
    order.
    """

    def __init__(
        self,
        connectivity: ConnectivitySignal,
        replay: ReplayHandler,
        capacity: int = OFFLINE_QUEUE_CAPACITY,
        clock: Callable[[], float] = monotonic_ms,
        stale_age_ms: int = STALE_WRITE_AGE_MS,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._replay = replay
        self._capacity = capacity
        self._clock = clock
        self._stale_age_ms = stale_age_ms
        self._queue: deque[QueuedWrite] = deque()
        self._tasks: set[asyncio.Task] = set()
        # Start from the real state, never assume online
        self._online = connectivity.is_online
        self._unsubscribe = connectivity.add_listener(self._on_connectivity_change)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def is_offline(self) -> bool:
        return not self._online

    def enqueue(self, key: str, data: Any) -> bool:
        """
        Append a write while offline; returns False (and stores nothing) online.

        When the queue is full the oldest entry is dropped first.
        """
        if self._online:
            return False
        while len(self._queue) >= self._capacity:
            dropped = self._queue.popleft()
            _LOGGER.debug("Offline queue full, dropped write for %s", dropped.target_key)
        self._queue.append(QueuedWrite(target_key=key, payload=data, enqueued_at_ms=self._clock()))
        return True

    def size(self) -> int:
        return len(self._queue)

    def items(self) -> list[QueuedWrite]:
        return list(self._queue)

    async def process_reconnect(self) -> int:
        """Replay everything queued; returns the number of writes replayed."""
        if not self._queue:
            return 0

        pending = list(self._queue)
        self._queue = deque()
        _LOGGER.info("Replaying %s offline writes", len(pending))

        replayed = 0
        for index, item in enumerate(pending):
            if self._clock() - item.enqueued_at_ms > self._stale_age_ms:
                _LOGGER.debug("Dropping stale offline write for %s", item.target_key)
                continue
            try:
                await self._replay(item)
            except Exception as exc:  # noqa: BLE001
                remaining = pending[index:]
                _LOGGER.warning(
                    "Replay of %s failed, requeueing %s writes: %s",
                    item.target_key, len(remaining), exc,
                )
                self._queue.extendleft(reversed(remaining))
                while len(self._queue) > self._capacity:
                    self._queue.popleft()
                return replayed
            replayed += 1
        return replayed

    async def wait_idle(self) -> None:
        """Wait for any replay started by a reconnect to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        self._unsubscribe()
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _on_connectivity_change(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            task = asyncio.ensure_future(self.process_reconnect())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
