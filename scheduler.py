#!/usr/bin/env python3
"""
Recurring Poll Scheduler

Runs the feed poller once immediately at startup and then every
POLL_INTERVAL_SECONDS until stopped. It supports:

- Idempotent start (a second start returns the loop already running)
- At most one poll cycle at a time
- Per-cycle failure isolation (the loop carries on to the next tick)
- Cooperative cancellation shared with the poller between feed groups
"""

import asyncio
from typing import Optional

from config import config, get_logger
from telemetry import init_telemetry, get_tracer, trace_span

# Module-specific logger
logger = get_logger("scheduler")

# Initialize telemetry for the scheduler subsystem
init_telemetry("feed-notifier-scheduler")
_tracer = get_tracer("scheduler")


class PollScheduler:
    """Fixed-interval scheduler driving a FeedPoller."""

    def __init__(self, poller, interval_seconds: Optional[float] = None):
        """Initialize scheduler.

        Args:
            poller: Object exposing ``poll_feeds(should_stop)``
            interval_seconds: Seconds between cycles (default: config.POLL_INTERVAL_SECONDS)
        """
        self.poller = poller
        self.interval_seconds = interval_seconds if interval_seconds is not None else config.POLL_INTERVAL_SECONDS
        self.cycles_run = 0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> asyncio.Task:
        """Start the polling loop, or return the loop that is already running."""
        if self.is_running:
            logger.debug("Scheduler already running; ignoring start request")
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        """Request a stop and wait for the current cycle to wind down."""
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_forever(self) -> None:
        """Poll immediately, then on every tick until stop is requested."""
        logger.info(f"🚀 Starting poll loop (every {self.interval_seconds:g}s)")
        try:
            while not self._stop_event.is_set():
                try:
                    await self._run_cycle()
                    if await self._wait_for_tick():
                        break
                except Exception as e:
                    # Escaped the per-cycle guard; log it and keep ticking
                    logger.critical(f"💥 Scheduler loop fault: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("📶 Scheduler cancelled - shutting down")
        logger.info("Poll loop stopped")

    async def _wait_for_tick(self) -> bool:
        """Sleep until the next tick; returns True if a stop was requested instead."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            return True
        except asyncio.TimeoutError:
            return False

    @trace_span("scheduler.cycle", tracer_name="scheduler")
    async def _run_cycle(self) -> None:
        self.cycles_run += 1
        try:
            await self.poller.poll_feeds(should_stop=self._stop_event.is_set)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Poll cycle {self.cycles_run} failed: {e}", exc_info=True)


# Convenience function for external use
def create_scheduler(poller, interval_seconds: Optional[float] = None) -> PollScheduler:
    """Create a PollScheduler for a poller."""
    return PollScheduler(poller, interval_seconds)
