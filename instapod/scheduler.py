"""
Run scheduling: a cron timer plus on-demand triggers, never overlapping.

RunGuard owns the single "run in progress" flag. Both the timer and the manual
trigger go through it; a trigger that arrives while a run is active is logged
and dropped, not queued.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, Set

from croniter import croniter

logger = logging.getLogger(__name__)


class RunGuard:
    """Serializes pipeline runs across all trigger sources."""

    def __init__(self, run_pipeline: Callable[[], Awaitable[object]]):
        self._run_pipeline = run_pipeline
        self._in_progress = False
        self._current: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self.runs_started = 0

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def _acquire(self, source: str) -> bool:
        # check-and-set without an await in between
        if self._in_progress:
            logger.info(f"[{source}] Run already in progress, skipping")
            return False
        self._in_progress = True
        self.runs_started += 1
        return True

    async def _execute(self, source: str) -> None:
        logger.info(f"[{source}] Starting pipeline run at {datetime.now().isoformat()}")
        try:
            await self._run_pipeline()
            logger.info(f"[{source}] Pipeline run completed at {datetime.now().isoformat()}")
        except Exception:
            logger.exception(f"[{source}] Pipeline run failed")
        finally:
            self._in_progress = False

    def trigger(self, source: str = "manual") -> bool:
        """Fire-and-forget run. Returns False when a run is already in progress.

        Must be called from inside a running event loop.
        """
        loop = asyncio.get_running_loop()
        if not self._acquire(source):
            return False
        try:
            task = loop.create_task(self._execute(source))
        except Exception:
            self._in_progress = False
            raise
        self._current = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def run_now(self) -> bool:
        return self.trigger("manual")

    async def run(self, source: str = "manual") -> bool:
        """Run and wait for completion. Returns False when a run is already in progress."""
        if not self._acquire(source):
            return False
        await self._execute(source)
        return True

    async def wait(self) -> None:
        """Wait for the in-flight triggered run, if any."""
        if self._current is not None and not self._current.done():
            await asyncio.shield(self._current)


class CronTimer:
    """Calls guard.trigger("scheduled") on a cron schedule."""

    def __init__(self, expression: str, guard: RunGuard,
                 clock: Callable[[], datetime] = datetime.now,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")
        self.expression = expression
        self.guard = guard
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def next_fire_time(self, after: Optional[datetime] = None) -> datetime:
        return croniter(self.expression, after or self._clock()).get_next(datetime)

    def start(self) -> None:
        if self._task is None or self._task.done():
            logger.info(f"[scheduler] Starting with cron: {self.expression}")
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        schedule = croniter(self.expression, self._clock())
        while True:
            fire_at = schedule.get_next(datetime)
            delay = (fire_at - self._clock()).total_seconds()
            if delay < 0:
                # missed ticks (host suspended, loop blocked) are skipped
                continue
            await self._sleep(delay)
            self.guard.trigger("scheduled")


def get_status(state, guard: RunGuard) -> dict:
    """Episode count, last run time and whether a run is active right now."""
    return {**state.status(), "run_in_progress": guard.in_progress}
