"""
BatchWriteAggregator — coalesces writes per key within a debounce window.

Delivery is at-least-once: entries from a failed flush go back into the
pending map and are sent again by the next flush, so sinks must apply
them idempotently.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .const import BATCH_DELAY_MS
from .scheduler import LoopScheduler, TimerHandle

_LOGGER = logging.getLogger(__name__)

BatchSink = Callable[[list[tuple[str, Any]]], Awaitable[None]]


class BatchWriteAggregator:
    """Debounced per-key write coalescer."""

    def __init__(
        self,
        sink: BatchSink,
        delay_ms: int = BATCH_DELAY_MS,
        scheduler: LoopScheduler | None = None,
    ) -> None:
        self._sink = sink
        self._delay_ms = delay_ms
        self._scheduler = scheduler or LoopScheduler()
        self._pending: dict[str, Any] = {}
        self._timer: TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> dict[str, Any]:
        return dict(self._pending)

    def add(self, key: str, payload: Any) -> None:
        """Store the latest payload for key and restart the debounce timer."""
        self._pending[key] = payload
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self._delay_ms, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> None:
        """Send everything pending now and cancel the debounce timer."""
        self._cancel_timer()
        if not self._pending:
            return

        entries = list(self._pending.items())
        self._pending.clear()
        try:
            await self._sink(entries)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Batch flush of %s entries failed: %s", len(entries), exc)
            # Payloads added while the sink was running are newer; keep them
            for key, payload in entries:
                self._pending.setdefault(key, payload)
            return
        _LOGGER.debug("Flushed batch of %s entries", len(entries))

    async def shutdown(self) -> None:
        """Flush what is pending and wait for in-flight timer flushes."""
        await self.flush()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
