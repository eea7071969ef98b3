"""Retry with exponential backoff and jitter around any awaitable factory."""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from .const import RETRY_BASE_DELAY_MS, RETRY_MAX_JITTER_MS

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """
    Runs a fallible coroutine factory up to max_retries + 1 times.

    There is no delay before the first attempt. Before retry n (1-indexed)
    the executor waits base_delay_ms * 2**(n-1) plus a random jitter of up
    to RETRY_MAX_JITTER_MS. Cancellation is left to the caller.
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._sleep = sleep
        self._jitter = jitter

    def backoff_ms(self, retry: int, base_delay_ms: int = RETRY_BASE_DELAY_MS) -> float:
        """Delay in milliseconds before the given 1-indexed retry."""
        return base_delay_ms * 2 ** (retry - 1) + self._jitter() * RETRY_MAX_JITTER_MS

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        max_retries: int,
        base_delay_ms: int = RETRY_BASE_DELAY_MS,
    ) -> T:
        """Return fn()'s result, or raise the last error once attempts run out."""
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:  # noqa: BLE001
                if attempt >= max_retries:
                    _LOGGER.warning("Giving up after %s attempts: %s", attempt + 1, exc)
                    raise
                attempt += 1
                delay_ms = self.backoff_ms(attempt, base_delay_ms)
                _LOGGER.debug(
                    "Attempt %s failed (%s), retrying in %.0f ms", attempt, exc, delay_ms
                )
                await self._sleep(delay_ms / 1000)
