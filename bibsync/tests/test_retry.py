"""
Unit tests for the retry policies.
"""

import unittest
from datetime import timedelta
from unittest.mock import AsyncMock

from bibsync.services.retry import queue_backoff, with_retry


class TestWithRetry(unittest.IsolatedAsyncioTestCase):
    """Test with_retry()."""

    async def test_success_first_try(self):
        operation = AsyncMock(return_value="ok")
        sleep = AsyncMock()

        result = await with_retry(operation, sleep=sleep)

        self.assertEqual(result, "ok")
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    async def test_retries_then_succeeds(self):
        operation = AsyncMock(side_effect=[ConnectionError("a"), ConnectionError("b"), "ok"])
        sleep = AsyncMock()

        result = await with_retry(operation, max_attempts=5, base_delay=1.0, sleep=sleep)

        self.assertEqual(result, "ok")
        self.assertEqual(operation.await_count, 3)
        self.assertEqual([c.args[0] for c in sleep.await_args_list], [1.0, 2.0])

    async def test_total_attempts_is_max_attempts_plus_one(self):
        operation = AsyncMock(side_effect=ConnectionError("down"))
        sleep = AsyncMock()

        with self.assertRaises(ConnectionError):
            await with_retry(operation, max_attempts=3, base_delay=0.5, sleep=sleep)

        self.assertEqual(operation.await_count, 4)
        self.assertEqual([c.args[0] for c in sleep.await_args_list], [0.5, 1.0, 2.0])

    async def test_reraises_last_error(self):
        operation = AsyncMock(side_effect=[ConnectionError("first"), ConnectionError("last")])

        with self.assertRaises(ConnectionError) as ctx:
            await with_retry(operation, max_attempts=1, sleep=AsyncMock())

        self.assertEqual(str(ctx.exception), "last")

    async def test_non_matching_error_is_not_retried(self):
        operation = AsyncMock(side_effect=KeyError("definitive"))
        sleep = AsyncMock()

        with self.assertRaises(KeyError):
            await with_retry(operation, retry_on=(ConnectionError,), sleep=sleep)

        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    async def test_zero_max_attempts_runs_once(self):
        operation = AsyncMock(side_effect=ConnectionError("x"))

        with self.assertRaises(ConnectionError):
            await with_retry(operation, max_attempts=0, sleep=AsyncMock())

        operation.assert_awaited_once()


class TestQueueBackoff(unittest.TestCase):
    """Test queue_backoff()."""

    def test_powers_of_two(self):
        self.assertEqual(queue_backoff(0), timedelta(seconds=1))
        self.assertEqual(queue_backoff(1), timedelta(seconds=2))
        self.assertEqual(queue_backoff(4), timedelta(seconds=16))


if __name__ == "__main__":
    unittest.main()
