"""Tests for RetryExecutor: attempt count, backoff schedule and final error."""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, call

from transit_sync.errors import ReadError
from transit_sync.retry import RetryExecutor


class TestRetryExecutor(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.sleep = AsyncMock()
        self.retry = RetryExecutor(sleep=self.sleep, jitter=lambda: 0.5)

    async def test_success_first_time(self):
        fn = AsyncMock(return_value="ok")
        self.assertEqual(await self.retry.run(fn, max_retries=3), "ok")
        fn.assert_awaited_once()
        self.sleep.assert_not_awaited()

    async def test_always_failing_makes_max_retries_plus_one_attempts(self):
        fn = AsyncMock(side_effect=ReadError("down"))
        with self.assertRaises(ReadError):
            await self.retry.run(fn, max_retries=2, base_delay_ms=1000)
        self.assertEqual(fn.await_count, 3)
        self.assertEqual(self.sleep.await_args_list, [call(1.5), call(2.5)])

    async def test_raises_last_error(self):
        errors = [ReadError("first"), ReadError("second")]
        fn = AsyncMock(side_effect=errors)
        with self.assertRaises(ReadError) as ctx:
            await self.retry.run(fn, max_retries=1)
        self.assertIs(ctx.exception, errors[1])

    async def test_recovers_after_failures(self):
        fn = AsyncMock(side_effect=[ReadError("a"), ReadError("b"), "ok"])
        self.assertEqual(await self.retry.run(fn, max_retries=3), "ok")
        self.assertEqual(fn.await_count, 3)
        self.assertEqual(self.sleep.await_count, 2)

    async def test_zero_retries(self):
        fn = AsyncMock(side_effect=ReadError("down"))
        with self.assertRaises(ReadError):
            await self.retry.run(fn, max_retries=0)
        fn.assert_awaited_once()
        self.sleep.assert_not_awaited()

    def test_backoff_doubles(self):
        retry = RetryExecutor(jitter=lambda: 0.0)
        self.assertEqual([retry.backoff_ms(n, 1000) for n in (1, 2, 3)], [1000, 2000, 4000])

    def test_jitter_bounded(self):
        retry = RetryExecutor(jitter=lambda: 0.999)
        delay = retry.backoff_ms(1, 1000)
        self.assertGreaterEqual(delay, 1000)
        self.assertLess(delay, 2000)

    def test_default_jitter_range(self):
        retry = RetryExecutor()
        for _ in range(20):
            self.assertTrue(1000 <= retry.backoff_ms(1, 1000) < 2000)


if __name__ == "__main__":
    unittest.main()
