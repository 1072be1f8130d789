"""Unit tests for BackgroundTaskRunner and CancellationToken."""
from __future__ import annotations

import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

from fakes import InlinePool, ManualPool

from clonetts.application.background_runner import BackgroundTaskRunner, CancellationToken
from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.errors import OperationCancelledError
from clonetts.utils.logger import Logger


class TestCancellationToken(unittest.TestCase):
    """Test cases for CancellationToken."""

    def test_cancel(self):
        """Test that cancel sets the flag and raise_if_cancelled raises."""
        token = CancellationToken()
        token.raise_if_cancelled()
        self.assertFalse(token.cancelled)

        token.cancel()

        self.assertTrue(token.cancelled)
        with self.assertRaises(OperationCancelledError):
            token.raise_if_cancelled()


class TestBackgroundTaskRunner(unittest.TestCase):
    """Test cases for BackgroundTaskRunner."""

    def setUp(self):
        """Set up test fixtures."""
        self.logger = Logger()
        self.consumer = ConsumerExecutor(logger=self.logger, poll_interval=0.005)

    def _runner(self, pool):
        return BackgroundTaskRunner(consumer=self.consumer, pool=pool, name="Test", logger=self.logger)

    def test_result_delivered_through_consumer(self):
        """Test that the result is handed over only when the consumer drains."""
        runner = self._runner(InlinePool())
        on_result = MagicMock()

        runner.run_background(3, lambda payload, token: payload * 2, on_result, failed_result=-1)

        on_result.assert_not_called()
        self.consumer.run_pending()
        on_result.assert_called_once_with(6)

    def test_failure_becomes_failed_result(self):
        """Test that an exception in work is logged and converted."""
        runner = self._runner(InlinePool())
        on_result = MagicMock()

        def work(payload, token):
            raise RuntimeError("engine exploded")

        runner.run_background(None, work, on_result, failed_result="")
        self.consumer.run_pending()

        on_result.assert_called_once_with("")
        self.assertTrue(any("engine exploded" in line for line in self.logger.lines))

    def test_cancel_signals_current_token_and_renews(self):
        """Test that cancel affects in-flight work but not later submissions."""
        pool = ManualPool()
        runner = self._runner(pool)
        seen = []

        def work(payload, token):
            seen.append(token.cancelled)
            return payload

        runner.run_background("a", work, MagicMock(), failed_result=None)
        runner.cancel()
        runner.run_background("b", work, MagicMock(), failed_result=None)
        pool.run_all()

        self.assertEqual(seen, [True, False])

    def test_cancelled_work_reports_failed_result(self):
        """Test that work observing cancellation delivers the failed result."""
        pool = ManualPool()
        runner = self._runner(pool)
        on_result = MagicMock()

        def work(payload, token):
            token.raise_if_cancelled()
            return "done"

        runner.run_background(None, work, on_result, failed_result="cancelled")
        runner.cancel()
        pool.run_all()
        self.consumer.run_pending()

        on_result.assert_called_once_with("cancelled")

    def test_stop_waits_for_outstanding_work(self):
        """Test that stop blocks until every work item has returned."""
        pool = ThreadPoolExecutor(max_workers=2)
        self.addCleanup(pool.shutdown)
        runner = self._runner(pool)
        started = threading.Event()
        finished = []

        def work(payload, token):
            started.set()
            token.wait(2.0)
            finished.append(payload)
            return payload

        runner.run_background("job", work, MagicMock(), failed_result=None)
        self.assertTrue(started.wait(2.0))

        self.assertTrue(runner.stop(timeout=2.0))
        self.assertEqual(finished, ["job"])
        self.assertEqual(runner.active_count, 0)

    def test_stop_reports_timeout(self):
        """Test that stop returns False when work outlives the timeout."""
        pool = ManualPool()
        runner = self._runner(pool)
        runner.run_background(None, lambda payload, token: None, MagicMock(), failed_result=None)

        self.assertFalse(runner.stop(timeout=0.01))
        self.assertEqual(runner.active_count, 1)

        pool.run_all()
        self.assertEqual(runner.active_count, 0)


if __name__ == "__main__":
    unittest.main()
