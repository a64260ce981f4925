from __future__ import annotations

import asyncio
import unittest

from trading.scheduler import STATE_IDLE, STATE_RUNNING, STATE_STOPPED, TickScheduler


class _BlockingTick:
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.started: list[int] = []
        self.finished: list[int] = []

    async def __call__(self, tick_no: int) -> None:
        self.started.append(tick_no)
        await self.release.wait()
        self.finished.append(tick_no)


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


class TickSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_rejects_non_positive_interval(self) -> None:
        with self.assertRaises(ValueError):
            TickScheduler(_BlockingTick(), 0)

    async def test_start_fires_immediately_and_is_idempotent(self) -> None:
        tick = _BlockingTick()
        tick.release.set()
        sched = TickScheduler(tick, 3600)
        sched.start()
        sched.start()
        await _settle()
        self.assertEqual(tick.finished, [1])
        self.assertEqual(sched.fired_count, 1)
        self.assertTrue(sched.is_running())
        self.assertEqual(sched.state, STATE_IDLE)
        await sched.stop()

    async def test_firings_during_slow_tick_are_dropped(self) -> None:
        tick = _BlockingTick()
        sched = TickScheduler(tick, 3600)
        sched.start()
        await _settle()
        self.assertEqual(sched.state, STATE_RUNNING)

        self.assertIsNone(sched._fire())
        self.assertIsNone(sched._fire())
        self.assertEqual((sched.fired_count, sched.skipped_count, sched.tick_count), (3, 2, 1))

        tick.release.set()
        await sched.wait_idle()
        self.assertIsNotNone(sched._fire())
        await sched.wait_idle()
        self.assertEqual(tick.started, [1, 2])
        self.assertEqual(tick.finished, [1, 2])
        await sched.stop()

    async def test_stop_lets_in_flight_tick_finish(self) -> None:
        tick = _BlockingTick()
        sched = TickScheduler(tick, 3600)
        sched.start()
        await _settle()

        await sched.stop()
        self.assertFalse(sched.is_running())
        self.assertEqual(sched.state, STATE_RUNNING)
        self.assertIsNone(sched._fire())

        tick.release.set()
        await sched.wait_idle()
        self.assertEqual(tick.finished, [1])
        self.assertEqual(sched.state, STATE_STOPPED)
        with self.assertRaises(RuntimeError):
            sched.start()

    async def test_stop_when_idle_moves_straight_to_stopped(self) -> None:
        sched = TickScheduler(_BlockingTick(), 3600)
        await sched.stop()
        self.assertEqual(sched.state, STATE_STOPPED)
        await sched.wait_idle()

    async def test_held_guard_skips_firing(self) -> None:
        guard = asyncio.Lock()
        tick = _BlockingTick()
        tick.release.set()
        sched = TickScheduler(tick, 3600, guard=guard)
        await guard.acquire()
        sched.start()
        await _settle()
        self.assertEqual((sched.tick_count, sched.skipped_count), (0, 1))

        guard.release()
        sched._fire()
        await sched.wait_idle()
        self.assertEqual(tick.finished, [1])
        self.assertFalse(guard.locked())
        await sched.stop()

    async def test_failing_tick_does_not_kill_the_loop(self) -> None:
        calls: list[int] = []

        async def tick_fn(tick_no: int) -> None:
            calls.append(tick_no)
            if tick_no == 1:
                raise RuntimeError("boom")

        sched = TickScheduler(tick_fn, 3600)
        sched.start()
        await _settle()
        self.assertEqual(sched.state, STATE_IDLE)
        sched._fire()
        await sched.wait_idle()
        self.assertEqual(calls, [1, 2])
        await sched.stop()

    async def test_timer_fires_on_interval(self) -> None:
        tick = _BlockingTick()
        tick.release.set()
        sched = TickScheduler(tick, 0.01)
        sched.start()
        await asyncio.sleep(0.1)
        await sched.stop()
        await sched.wait_idle()
        self.assertGreaterEqual(len(tick.finished), 3)
        self.assertEqual(sched.tick_count, len(tick.finished))


if __name__ == "__main__":
    unittest.main()
