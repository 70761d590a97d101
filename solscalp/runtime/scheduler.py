"""
IntervalLoop: fixed-interval async task with cooperative shutdown.

Each loop runs one cycle to completion, then waits on the shared stop event
with the interval as timeout. Setting the stop event never interrupts a
running cycle (an in-flight sell always finishes), and no new cycle starts
once it is set.

Usage:
    stop_event = asyncio.Event()
    loop = IntervalLoop("fast_stop_loss", monitor.run_cycle, 10.0, stop_event)
    task = asyncio.create_task(loop.run())
    ...
    stop_event.set()
    await task
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from solscalp.monitoring.logger import get_logger

logger = get_logger(__name__)


class IntervalLoop:
    def __init__(
        self,
        name: str,
        cycle: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        stop_event: asyncio.Event,
    ):
        self.name = name
        self._cycle = cycle
        self.interval_seconds = interval_seconds
        self._stop_event = stop_event
        self.cycles_run = 0
        self.last_error: Optional[str] = None

    async def run(self) -> None:
        logger.info("Loop started", loop=self.name, interval_seconds=self.interval_seconds)
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                await self._cycle()
                self.last_error = None
            except Exception as e:
                # One bad cycle must not kill the loop; the next cycle retries
                self.last_error = str(e)
                logger.error("Loop cycle failed", loop=self.name, error=str(e), exc_info=True)
            self.cycles_run += 1

            elapsed = time.monotonic() - started
            if elapsed > self.interval_seconds:
                logger.warning(
                    "Loop cycle overran interval",
                    loop=self.name,
                    elapsed_seconds=round(elapsed, 2),
                    interval_seconds=self.interval_seconds,
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Loop stopped", loop=self.name, cycles_run=self.cycles_run)
