import threading
import unittest

from crm.concurrency import fetch_parallel


class FetchParallelTests(unittest.TestCase):
    def test_results_keep_call_order(self):
        release = threading.Event()

        def slow():
            release.wait(timeout=5)
            return "slow"

        def fast():
            release.set()
            return "fast"

        self.assertEqual(fetch_parallel(slow, fast), ["slow", "fast"])

    def test_no_calls(self):
        self.assertEqual(fetch_parallel(), [])

    def test_first_error_propagates(self):
        def boom():
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            fetch_parallel(lambda: 1, boom)

    def test_pending_calls_are_cancelled(self):
        release = threading.Event()
        started = []

        def boom():
            raise RuntimeError("boom")

        def later():
            started.append(True)
            release.wait(timeout=5)

        try:
            with self.assertRaises(RuntimeError):
                fetch_parallel(boom, later, later, later, max_workers=1)
        finally:
            release.set()
        # At most the call the worker had already picked up ran.
        self.assertLessEqual(len(started), 1)


if __name__ == "__main__":
    unittest.main()
