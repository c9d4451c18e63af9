import threading
import unittest
from unittest.mock import Mock

from market_pipeline.errors import FetchError, RunInProgressError
from market_pipeline.schemas.run import RunReport
from market_pipeline.services.scheduler import NightlyScheduler


class TestNightlyScheduler(unittest.TestCase):
    def test_trigger_counts_each_outcome(self):
        loop = Mock()
        loop.run_nightly.side_effect = [
            RunReport(mode="nightly"),
            RunInProgressError("on-demand-1234"),
            FetchError("markets:p1: HTTP 503", status_code=503),
            RunReport(mode="nightly", status="cancelled"),
        ]
        scheduler = NightlyScheduler(collection_loop=loop, interval_sec=3600)

        for _ in range(4):
            scheduler.trigger()

        metrics = scheduler.metrics()
        self.assertEqual(metrics["triggers"], 4)
        self.assertEqual(metrics["succeeded"], 1)
        self.assertEqual(metrics["skipped"], 1)
        self.assertEqual(metrics["failed"], 1)
        self.assertIn("HTTP 503", metrics["last_error"])
        self.assertFalse(metrics["running"])

    def test_unexpected_error_is_counted_and_schedule_survives(self):
        fired_after_error = threading.Event()
        calls = []
        loop = Mock()

        def run_nightly():
            calls.append(1)
            if len(calls) == 1:
                raise ValueError("ath_date")
            fired_after_error.set()
            return RunReport(mode="nightly")

        loop.run_nightly.side_effect = run_nightly
        scheduler = NightlyScheduler(collection_loop=loop, interval_sec=0.01)

        scheduler.start()
        try:
            self.assertTrue(fired_after_error.wait(1.0), "scheduler thread died after an unexpected error")
        finally:
            scheduler.stop()

        metrics = scheduler.metrics()
        self.assertEqual(metrics["failed"], 1)
        self.assertGreaterEqual(metrics["succeeded"], 1)
        self.assertEqual(metrics["last_error"], "ValueError: ath_date")

    def test_thread_fires_on_interval_and_stops_the_loop(self):
        fired = threading.Event()
        loop = Mock()

        def run_nightly():
            fired.set()
            return RunReport(mode="nightly")

        loop.run_nightly.side_effect = run_nightly
        scheduler = NightlyScheduler(collection_loop=loop, interval_sec=0.01)

        scheduler.start()
        try:
            self.assertTrue(fired.wait(1.0), "scheduler did not trigger a nightly run")
            self.assertTrue(scheduler.running)
        finally:
            scheduler.stop()

        self.assertFalse(scheduler.running)
        loop.stop.assert_called_once_with()
        self.assertGreaterEqual(scheduler.metrics()["succeeded"], 1)

    def test_start_is_idempotent(self):
        loop = Mock()
        loop.run_nightly.return_value = RunReport(mode="nightly")
        scheduler = NightlyScheduler(collection_loop=loop, interval_sec=60)

        scheduler.start()
        first = scheduler._thread
        scheduler.start()
        try:
            self.assertIs(scheduler._thread, first)
        finally:
            scheduler.stop()
        loop.run_nightly.assert_not_called()


if __name__ == "__main__":
    unittest.main()
