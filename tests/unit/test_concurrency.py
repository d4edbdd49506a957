import asyncio
import unittest

from nexti18n.concurrency import STRATEGY_BATCH, STRATEGY_POOL, run_concurrently, run_in_batches, run_worker_pool


class ConcurrencyProbe:
    def __init__(self):
        self.active = 0
        self.peak = 0
        self.started = []

    async def work(self, item):
        self.started.append(item)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            # Later items finish first so ordering bugs show up.
            await asyncio.sleep(0.001 * (10 - item % 10))
            return item * 2
        finally:
            self.active -= 1


class TestSchedulers(unittest.IsolatedAsyncioTestCase):
    async def test_worker_pool_respects_limit_and_keeps_order(self):
        probe = ConcurrencyProbe()
        results = await run_worker_pool(list(range(25)), probe.work, 4)
        self.assertEqual(results, [i * 2 for i in range(25)])
        self.assertLessEqual(probe.peak, 4)
        self.assertGreater(probe.peak, 1)

    async def test_batches_respect_limit_and_keep_order(self):
        probe = ConcurrencyProbe()
        results = await run_in_batches(list(range(25)), probe.work, 4, desc="testing")
        self.assertEqual(results, [i * 2 for i in range(25)])
        self.assertLessEqual(probe.peak, 4)

    async def test_empty_input(self):
        for strategy in (STRATEGY_POOL, STRATEGY_BATCH):
            self.assertEqual(await run_concurrently([], ConcurrencyProbe().work, 3, strategy), [])

    async def test_unknown_strategy(self):
        with self.assertRaises(ValueError):
            await run_concurrently([1], ConcurrencyProbe().work, 3, "threads")

    async def test_invalid_limit(self):
        with self.assertRaises(ValueError):
            await run_worker_pool([1], ConcurrencyProbe().work, 0)

    async def test_worker_errors_propagate(self):
        async def failing(item):
            raise RuntimeError("boom")

        with self.assertRaises(BaseException):
            await run_worker_pool([1, 2], failing, 2)
