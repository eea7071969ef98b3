"""
Timer scheduling used by the poll loop and the batch debounce.

All timers run on the event loop, so cancel-then-reschedule needs no lock.
Tests replace LoopScheduler with a recording fake.
"""
from __future__ import annotations

import asyncio
from typing import Callable


class TimerHandle:
    """Cancellable handle returned by a scheduler."""

    def __init__(self, handle: asyncio.TimerHandle, delay_ms: int) -> None:
        self._handle = handle
        self.delay_ms = delay_ms

    def cancel(self) -> None:
        self._handle.cancel()

    def cancelled(self) -> bool:
        return self._handle.cancelled()


class LoopScheduler:
    """Schedules plain callbacks on the running event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return TimerHandle(loop.call_later(delay_ms / 1000, callback), delay_ms)
