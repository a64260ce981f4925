"""Single-flight interval scheduler for the position-management tick."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_RUNNING = "running"
STATE_STOPPED = "stopped"

TickFn = Callable[[int], Awaitable[object]]


class TickScheduler:
    """Runs `tick_fn(tick_no)` every `interval_seconds`, never two at once.

    A firing that lands while a tick is still in flight (or while `guard` is
    held by a manual command) is dropped, not queued. `stop()` prevents new
    ticks but lets the current one finish.
    """

    def __init__(self, tick_fn: TickFn, interval_seconds: float, guard: asyncio.Lock | None = None) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._tick_fn = tick_fn
        self.interval_seconds = float(interval_seconds)
        self._guard = guard
        self._state = STATE_IDLE
        self._stop_requested = False
        self._timer_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self.tick_count = 0
        self.fired_count = 0
        self.skipped_count = 0

    @property
    def state(self) -> str:
        return self._state

    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def start(self) -> None:
        if self._stop_requested:
            raise RuntimeError("scheduler already stopped")
        if self.is_running():
            return
        logger.info("SCHEDULER_START interval=%.1fs", self.interval_seconds)
        self._fire()
        self._timer_task = asyncio.create_task(self._timer_loop(), name="tick_scheduler_timer")

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._fire()

    def _tick_in_flight(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def _fire(self) -> asyncio.Task | None:
        self.fired_count += 1
        if self._stop_requested:
            return None
        if self._tick_in_flight() or (self._guard is not None and self._guard.locked()):
            self.skipped_count += 1
            logger.info("TICK_SKIPPED reason=busy fired=%s skipped=%s", self.fired_count, self.skipped_count)
            return None
        self.tick_count += 1
        self._tick_task = asyncio.create_task(self._run_tick(self.tick_count), name=f"tick_{self.tick_count}")
        return self._tick_task

    async def _run_tick(self, tick_no: int) -> None:
        if self._guard is None:
            await self._execute(tick_no)
            return
        async with self._guard:
            await self._execute(tick_no)

    async def _execute(self, tick_no: int) -> None:
        self._state = STATE_RUNNING
        try:
            await self._tick_fn(tick_no)
        except Exception:
            logger.exception("TICK_FAILED tick=%s", tick_no)
        finally:
            self._state = STATE_STOPPED if self._stop_requested else STATE_IDLE

    async def stop(self) -> None:
        """Cancel the timer; an in-flight tick keeps running to completion."""
        self._stop_requested = True
        timer = self._timer_task
        self._timer_task = None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        if not self._tick_in_flight():
            self._state = STATE_STOPPED
        logger.info(
            "SCHEDULER_STOP ticks=%s fired=%s skipped=%s in_flight=%s",
            self.tick_count,
            self.fired_count,
            self.skipped_count,
            self._tick_in_flight(),
        )

    async def wait_idle(self) -> None:
        task = self._tick_task
        if task is not None and not task.done():
            await asyncio.shield(task)
