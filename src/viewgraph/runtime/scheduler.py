"""
Scheduler for DAILY computed fields.

Runs the DAILY rule set once at startup and then at every local midnight.

    IDLE --start()--> SCHEDULED --midnight--> RUNNING --done--> SCHEDULED
                          |                      |
                          +------ stop() --------+--> STOPPED (terminal)

stop() never interrupts a run in progress: it waits for the run to finish
and then prevents further runs.

Usage:
    scheduler = ComputedFieldScheduler(compiler, rules, store.execute)
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..compiler.computed import ComputedFieldCompiler, ExecuteFn, RunResult
from ..core.spec_types import Rule, Schedule

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


def seconds_until_next_midnight(now: datetime) -> float:
    """Seconds from now to the next local midnight (never zero)."""
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


class ComputedFieldScheduler:
    """
    Owned scheduler driving the DAILY rule set.

    Args:
        compiler: Compiler used for each run
        rules: All rules; only DAILY ones are run
        execute: Sync or async execute(sql) -> rowcount
        run_on_startup: Run once immediately when started
        clock: Returns the current datetime (injectable for tests)
        sleep: Awaitable sleep(seconds) (injectable for tests)
    """

    def __init__(
        self,
        compiler: ComputedFieldCompiler,
        rules: Sequence[Rule],
        execute: ExecuteFn,
        run_on_startup: bool = True,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.compiler = compiler
        self.rules = ComputedFieldCompiler.rules_for(rules, Schedule.DAILY)
        self.execute = execute
        self.run_on_startup = run_on_startup
        self._clock = clock
        self._sleep = sleep

        self.state = SchedulerState.IDLE
        self.last_result: Optional[RunResult] = None
        self.next_run: Optional[datetime] = None
        self.run_count = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._loop_running = False
        self._run_lock = asyncio.Lock()

    async def start(self):
        """Arm the scheduler and perform the startup run."""
        if self.state == SchedulerState.STOPPED:
            logger.warning("Scheduler already stopped, not restarting")
            return
        if self._task is not None:
            logger.warning("Scheduler already running")
            return

        self.state = SchedulerState.SCHEDULED
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Computed field scheduler started ({len(self.rules)} DAILY fields)")

    async def stop(self):
        """Stop the scheduler. A run in progress is allowed to finish."""
        self._stop_requested = True

        if self._task is not None:
            if self._loop_running:
                logger.info("Waiting for the current run to finish")
            else:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        # a run_now() call outside the loop may still hold the lock
        async with self._run_lock:
            pass

        self.state = SchedulerState.STOPPED
        self.next_run = None
        logger.info("Computed field scheduler stopped")

    async def run_now(self) -> RunResult:
        """Run the DAILY rule set immediately (one run at a time)."""
        async with self._run_lock:
            previous = self.state
            self.state = SchedulerState.RUNNING
            try:
                logger.info("Running DAILY computed fields")
                self.last_result = await self.compiler.run_rules(self.rules, self.execute)
                self.run_count += 1
            finally:
                if self._stop_requested:
                    self.state = SchedulerState.STOPPED
                else:
                    self.state = previous if previous != SchedulerState.RUNNING else SchedulerState.SCHEDULED
            return self.last_result

    async def _loop(self):
        try:
            if self.run_on_startup:
                await self._run_safely()

            while not self._stop_requested:
                delay = seconds_until_next_midnight(self._clock())
                self.next_run = self._clock() + timedelta(seconds=delay)
                logger.info(f"Scheduled next DAILY computation at {self.next_run.isoformat()}")
                await self._sleep(delay)
                if self._stop_requested:
                    break
                await self._run_safely()
        except asyncio.CancelledError:
            logger.debug("Scheduler loop cancelled")
            raise

    async def _run_safely(self):
        self._loop_running = True
        try:
            await self.run_now()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled run failed: {e}", exc_info=True)
        finally:
            self._loop_running = False

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "daily_fields": len(self.rules),
            "run_count": self.run_count,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
