import asyncio
import unittest

from twinwatch.services.scheduler import FaultSweepScheduler, sweep_loop


class CountingService:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def run_scheduled_check(self, window_seconds=None):
        self.calls.append(window_seconds)
        if self.fail:
            raise RuntimeError("boom")
        return 0


class SweepSchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_zero_interval_runs_once(self):
        service = CountingService()

        await sweep_loop(service, 0, window_seconds=120)

        self.assertEqual(service.calls, [120])

    async def test_sweep_errors_are_logged(self):
        service = CountingService(fail=True)

        with self.assertLogs("twinwatch.scheduler", level="ERROR"):
            await sweep_loop(service, 0)

        self.assertEqual(len(service.calls), 1)

    async def test_start_and_stop(self):
        service = CountingService()
        scheduler = FaultSweepScheduler(service, interval_minutes=60, window_seconds=300)

        scheduler.start()
        scheduler.start()
        self.assertTrue(scheduler.running)
        await asyncio.sleep(0)
        await scheduler.stop()

        self.assertFalse(scheduler.running)
        self.assertEqual(service.calls, [300])
        await scheduler.stop()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
